"""Service configuration and credential sources."""
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from .core.retry import RetryPolicy
from .tools.policy import ToolPolicy

ENV_PREFIX = "LLM_SERVICE_"

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE


@dataclass
class ServiceConfig:
    """Knobs for :class:`~llm_service.core.service.LLMService`.

    Attributes:
        default_provider: Used when neither request nor context names one.
        default_model: Used when neither request nor context names one.
        max_attempts: Stream attempts including the first.
        max_cumulative_wait_s: Ceiling on total retry backoff.
        base_delay_s: First retry delay.
        max_delay_s: Ceiling on a single retry delay.
        jitter: Randomise retry delays.
        forward_skip_history_chunks: Emit ``chunk`` events for stateless
            calls too (normally suppressed).
        max_output_tokens: ``max_tokens`` sent to vendors.
        tool_policy: Default policy for wrapping caller tools.
    """
    default_provider: Optional[str] = None
    default_model: Optional[str] = None
    max_attempts: int = 3
    max_cumulative_wait_s: float = 60.0
    base_delay_s: float = 1.0
    max_delay_s: float = 20.0
    jitter: bool = True
    forward_skip_history_chunks: bool = False
    max_output_tokens: int = 8192
    tool_policy: ToolPolicy = field(default_factory=ToolPolicy)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            max_cumulative_wait_s=self.max_cumulative_wait_s,
            base_delay_s=self.base_delay_s,
            max_delay_s=self.max_delay_s,
            jitter=self.jitter,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ServiceConfig":
        """Build from a plain mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k != "tool_policy"}
        policy_data = data.get("tool_policy") or {}
        if isinstance(policy_data, ToolPolicy):
            policy = policy_data
        else:
            policy_known = {f.name for f in fields(ToolPolicy)}
            policy = ToolPolicy(**{k: v for k, v in policy_data.items() if k in policy_known})
        return cls(tool_policy=policy, **values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ServiceConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        return cls.from_mapping(data.get("llm_service", data))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        """Read ``LLM_SERVICE_*`` variables, e.g. ``LLM_SERVICE_MAX_ATTEMPTS=5``."""
        env = os.environ if environ is None else environ
        config = cls()
        for f in fields(cls):
            if f.name == "tool_policy":
                continue
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            current = getattr(config, f.name)
            if isinstance(current, bool):
                value: Any = _env_bool(raw)
            elif isinstance(current, int):
                value = int(raw)
            elif isinstance(current, float):
                value = float(raw)
            else:
                value = raw
            setattr(config, f.name, value)
        return config


# ── Credential sources ──────────────────────────────────────────────────

PROVIDER_KEY_ENV: dict[str, tuple[str, ...]] = {
    "anthropic": ("ANTHROPIC_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "fireworks": ("FIREWORKS_API_KEY",),
    "xai": ("XAI_API_KEY",),
    "openrouter": ("OPENROUTER_API_KEY",),
}


class EnvCredentialSource:
    """API keys from environment variables (``.env`` is loaded on package import)."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    def get_key(self, provider: str) -> Optional[str]:
        env = os.environ if self._environ is None else self._environ
        for name in PROVIDER_KEY_ENV.get(provider, ()):
            value = env.get(name)
            if value:
                return value
        return None


class StaticCredentialSource:
    """API keys from a fixed mapping, e.g. ``{"openai": "sk-..."}``."""

    def __init__(self, keys: Mapping[str, str]):
        self._keys = dict(keys)

    def get_key(self, provider: str) -> Optional[str]:
        return self._keys.get(provider) or None
