from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

IFLOW_BASE_URL = "https://apis.iflow.cn/v1"
NIM_BASE_URL = "https://integrate.api.nvidia.com/v1"

DEFAULT_TIMEOUT = 180.0
DEFAULT_VARIANT = "creative"

IFLOW_DEFAULT_MODEL = "deepseek-v3.2"
NIM_DEFAULT_MODEL = "deepseek-ai/deepseek-r1"

IFLOW_MODELS: Mapping[str, str] = MappingProxyType(
    {
        "gpt-3.5-turbo": IFLOW_DEFAULT_MODEL,
        "gpt-4": IFLOW_DEFAULT_MODEL,
        "gpt-4-turbo": IFLOW_DEFAULT_MODEL,
        "gpt-4o": IFLOW_DEFAULT_MODEL,
        "claude-3-opus": IFLOW_DEFAULT_MODEL,
        "claude-3-sonnet": IFLOW_DEFAULT_MODEL,
        "gemini-pro": IFLOW_DEFAULT_MODEL,
        "deepseek-v3.2": IFLOW_DEFAULT_MODEL,
    }
)

NIM_MODELS: Mapping[str, str] = MappingProxyType(
    {
        "gpt-3.5-turbo": "meta/llama-3.1-8b-instruct",
        "gpt-4": "deepseek-ai/deepseek-r1",
        "gpt-4-turbo": "deepseek-ai/deepseek-r1",
        "gpt-4o": "deepseek-ai/deepseek-r1",
        "claude-3-opus": "qwen/qwq-32b",
        "claude-3-sonnet": "meta/llama-3.1-70b-instruct",
        "gemini-pro": "meta/llama-3.1-70b-instruct",
        "deepseek-r1": "deepseek-ai/deepseek-r1",
    }
)

CREATIVE_WRITING_PROMPT = (
    "You must respond ONLY in English. You are a creative writing assistant. "
    "Write engaging, vivid narratives. Do not show reasoning or thinking process - "
    "provide direct creative responses. Focus on immersive storytelling."
)
CREATIVE_WRITING_PREFIX = "IMPORTANT: Respond ONLY in English. Do not show reasoning. "


@dataclass(frozen=True)
class Variant:
    """One upstream target and the request/response policy applied to it."""

    name: str
    service: str
    display_name: str
    base_url: str
    api_key_env: str
    owned_by: str
    model_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    default_model: str = IFLOW_DEFAULT_MODEL
    default_temperature: float = 0.7
    default_max_tokens: int = 4096
    # raise smaller max_tokens values up to this floor; None keeps the caller's value
    min_max_tokens: int | None = None
    system_prompt: str | None = None
    system_prefix: str | None = None
    clean_reasoning: bool = False
    legacy_routes: bool = False
    timeout: float = DEFAULT_TIMEOUT
    mode: str = "Standard"

    @property
    def chat_completions_url(self) -> str:
        return self.base_url.rstrip("/") + "/chat/completions"

    def resolve_model(self, name: str | None) -> str:
        if isinstance(name, str) and name in self.model_map:
            return self.model_map[name]
        return self.default_model


VARIANTS: Mapping[str, Variant] = MappingProxyType(
    {
        "plain": Variant(
            name="plain",
            service="iflow-proxy",
            display_name="iFlow Proxy",
            base_url=IFLOW_BASE_URL,
            api_key_env="IFLOW_API_KEY",
            owned_by="iflow",
            model_map=IFLOW_MODELS,
            default_model=IFLOW_DEFAULT_MODEL,
            default_temperature=0.7,
            default_max_tokens=4096,
        ),
        "creative": Variant(
            name="creative",
            service="iflow-proxy",
            display_name="iFlow Proxy",
            base_url=IFLOW_BASE_URL,
            api_key_env="IFLOW_API_KEY",
            owned_by="iflow",
            model_map=IFLOW_MODELS,
            default_model=IFLOW_DEFAULT_MODEL,
            default_temperature=0.9,
            default_max_tokens=8192,
            min_max_tokens=1024,
            system_prompt=CREATIVE_WRITING_PROMPT,
            system_prefix=CREATIVE_WRITING_PREFIX,
            clean_reasoning=True,
            legacy_routes=True,
            mode="Creative Writing (English, reasoning filtered)",
        ),
        "nim": Variant(
            name="nim",
            service="nim-proxy",
            display_name="NIM Proxy",
            base_url=NIM_BASE_URL,
            api_key_env="NIM_API_KEY",
            owned_by="nvidia",
            model_map=NIM_MODELS,
            default_model=NIM_DEFAULT_MODEL,
            default_temperature=0.6,
            default_max_tokens=4096,
            clean_reasoning=True,
            mode="NVIDIA NIM (reasoning filtered)",
        ),
    }
)


def get_variant(name: str | None) -> Variant:
    key = (name or DEFAULT_VARIANT).strip().lower()
    try:
        return VARIANTS[key]
    except KeyError:
        raise ValueError(f"Unknown variant {name!r}; expected one of: {', '.join(sorted(VARIANTS))}") from None
