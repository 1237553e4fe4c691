from pathlib import Path

import pytest

from nexa_agent.config import DEFAULT_MODEL, MODE_MODELS, AgentConfig, load_config
from nexa_agent.errors import ConfigError


def test_defaults():
    config = load_config({})
    assert config.model == DEFAULT_MODEL
    assert config.resolved_model == DEFAULT_MODEL
    assert config.max_rounds == 8
    assert config.temperature == 0.7
    assert config.log_level == "WARNING"
    assert "Nexa" in config.system_instruction


def test_environment_overrides():
    config = load_config(
        {
            "NEXA_MODEL": "openai/gpt-4o-mini",
            "NEXA_TEMPERATURE": "0.2",
            "NEXA_MAX_ROUNDS": "3",
            "NEXA_LATENCY_SCALE": "0",
            "NEXA_SESSION_FILE": "/tmp/nexa-test/sessions.json",
            "NEXA_LOG_LEVEL": "debug",
            "NEXA_SYSTEM_INSTRUCTION": "Be brief.",
        }
    )
    assert config.resolved_model == "openai/gpt-4o-mini"
    assert config.temperature == 0.2
    assert config.max_rounds == 3
    assert config.latency_scale == 0.0
    assert config.session_file == Path("/tmp/nexa-test/sessions.json")
    assert config.log_level == "DEBUG"
    assert config.system_instruction == "Be brief."


def test_blank_values_are_ignored():
    config = load_config({"NEXA_MODEL": "  ", "NEXA_MAX_ROUNDS": ""})
    assert config.model == DEFAULT_MODEL
    assert config.max_rounds == 8


@pytest.mark.parametrize("mode", ["fast", "MAX"])
def test_model_mode_wins_over_model(mode):
    config = load_config({"NEXA_MODEL": "other/model", "NEXA_MODEL_MODE": mode})
    assert config.resolved_model == MODE_MODELS[mode.lower()]


@pytest.mark.parametrize(
    "key,value",
    [
        ("NEXA_MAX_ROUNDS", "0"),
        ("NEXA_MAX_ROUNDS", "many"),
        ("NEXA_TEMPERATURE", "5"),
        ("NEXA_MODEL_MODE", "turbo"),
        ("NEXA_LOG_LEVEL", "loud"),
    ],
)
def test_invalid_values_raise_config_error(key, value):
    with pytest.raises(ConfigError) as exc_info:
        load_config({key: value})
    assert exc_info.value.key == key
    assert key in str(exc_info.value)


def test_agent_config_direct():
    config = AgentConfig(model_mode="max")
    assert config.resolved_model == MODE_MODELS["max"]
