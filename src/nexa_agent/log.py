# log.py
# Logging setup. Modules use logging.getLogger(__name__); the entry point
# calls configure_logging() once so records render through rich.

import logging

from rich.logging import RichHandler

from nexa_agent.display import console

_configured = False


def configure_logging(level: str = "WARNING") -> None:
    global _configured
    if _configured:
        logging.getLogger().setLevel(level)
        return

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(
        RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    )

    # The SDK's HTTP client is chatty at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
