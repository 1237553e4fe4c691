# workspace.py
# Side-channel artifacts produced by tools: files, the last fetched page, the
# currently running tool call and whether the auxiliary viewer is open.
# Owned by one conversation; a new conversation starts with a fresh one.

from typing import Callable

from nexa_agent.models import FileArtifact, ToolCall, WebContent


class Workspace:
    def __init__(self, on_reveal: Callable[[], None] | None = None) -> None:
        self.files: list[FileArtifact] = []
        self.last_web_content: WebContent | None = None
        self.active_tool_call: ToolCall | None = None
        self.viewer_open = False
        self._on_reveal = on_reveal

    def reveal_viewer(self) -> bool:
        """
        Open the auxiliary viewer. Returns True only when it was closed;
        revealing an already-open viewer changes nothing and fires no signal.
        """
        if self.viewer_open:
            return False
        self.viewer_open = True
        if self._on_reveal is not None:
            self._on_reveal()
        return True

    def add_file(self, artifact: FileArtifact) -> None:
        self.files.append(artifact)

    @property
    def latest_file(self) -> FileArtifact | None:
        return self.files[-1] if self.files else None
