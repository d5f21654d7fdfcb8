from pathlib import Path

import pytest

from llm_service.config import EnvCredentialSource, ServiceConfig, StaticCredentialSource
from llm_service.tools.policy import ToolPolicy


def test_defaults_build_retry_policy() -> None:
    policy = ServiceConfig().retry_policy()
    assert policy.max_attempts == 3
    assert policy.max_cumulative_wait_s == 60.0


def test_from_env_casts_by_field_type() -> None:
    config = ServiceConfig.from_env({
        "LLM_SERVICE_DEFAULT_PROVIDER": "openai",
        "LLM_SERVICE_MAX_ATTEMPTS": "5",
        "LLM_SERVICE_BASE_DELAY_S": "0.5",
        "LLM_SERVICE_JITTER": "off",
        "LLM_SERVICE_FORWARD_SKIP_HISTORY_CHUNKS": "yes",
        "UNRELATED": "x",
    })
    assert config.default_provider == "openai"
    assert config.max_attempts == 5
    assert config.base_delay_s == 0.5
    assert config.jitter is False
    assert config.forward_skip_history_chunks is True


def test_from_yaml_reads_nested_section(tmp_path: Path) -> None:
    path = tmp_path / "service.yaml"
    path.write_text(
        "llm_service:\n"
        "  default_model: gpt-4o\n"
        "  max_delay_s: 3\n"
        "  unknown_key: ignored\n"
        "  tool_policy:\n"
        "    max_read_lines_per_range: 1\n"
        "    dedupe_search: false\n"
    )
    config = ServiceConfig.from_yaml(path)
    assert config.default_model == "gpt-4o"
    assert config.max_delay_s == 3
    assert config.tool_policy == ToolPolicy(max_read_lines_per_range=1, dedupe_search=False)


def test_from_yaml_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        ServiceConfig.from_yaml(path)


def test_env_credentials() -> None:
    source = EnvCredentialSource({"GOOGLE_API_KEY": "g-key", "OPENAI_API_KEY": ""})
    assert source.get_key("gemini") == "g-key"
    assert source.get_key("openai") is None
    assert source.get_key("nobody") is None


def test_static_credentials() -> None:
    source = StaticCredentialSource({"anthropic": "sk-ant", "xai": ""})
    assert source.get_key("anthropic") == "sk-ant"
    assert source.get_key("xai") is None
