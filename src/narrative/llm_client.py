"""
LLM completion backends for narrative text.

``mock`` is a valid narrative mode but has no backend here: the narrative
service renders its deterministic template instead of calling out.  The
real backends (openai, anthropic) are imported lazily so the ``llm`` extra
stays optional.

Configuration is read from Settings (env / .env).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

MOCK = "mock"
PROVIDERS = (MOCK, "openai", "anthropic")

NARRATIVE_MAX_TOKENS = 400

SYSTEM_PROMPT = (
    "You are a senior paid-media analyst. You write short, factual narratives "
    "about advertising performance for client reports."
)


@dataclass(frozen=True)
class _Backend:
    name: str
    model: str
    key_setting: str
    complete: Callable[[Any, str, str, str, int], str]


def _openai_complete(module: Any, api_key: str, system: str, prompt: str, max_tokens: int) -> str:
    client = module.OpenAI(api_key=api_key)
    response = client.chat.completions.create(
        model=_BACKENDS["openai"].model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=0.2,
        max_tokens=max_tokens,
    )
    return response.choices[0].message.content or ""


def _anthropic_complete(module: Any, api_key: str, system: str, prompt: str, max_tokens: int) -> str:
    client = module.Anthropic(api_key=api_key)
    response = client.messages.create(
        model=_BACKENDS["anthropic"].model,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": prompt}],
    )
    return response.content[0].text if response.content else ""


_BACKENDS: dict[str, _Backend] = {
    "openai": _Backend("openai", "gpt-4o-mini", "openai_api_key", _openai_complete),
    "anthropic": _Backend("anthropic", "claude-3-haiku-20240307", "anthropic_api_key", _anthropic_complete),
}


def _api_key(backend: _Backend) -> str:
    api_key = getattr(get_settings(), backend.key_setting)
    if not api_key:
        raise RuntimeError(
            f"{backend.key_setting} is not set.  "
            f"Set {backend.key_setting.upper()} in your .env file or environment."
        )
    return api_key


def _import_sdk(backend: _Backend) -> Any:
    try:
        if backend.name == "openai":
            import openai  # type: ignore[import-untyped]
            return openai
        import anthropic  # type: ignore[import-untyped]
        return anthropic
    except ImportError as exc:
        raise RuntimeError(
            f"The '{backend.name}' package is not installed.  "
            "Run: pip install 'block-resolution-engine[llm]'"
        ) from exc


def resolve_provider(provider: str | None = None) -> str:
    """Normalise a narrative mode name; unknown names raise ``ValueError``."""
    name = (provider or get_settings().llm_provider).lower()
    if name not in PROVIDERS:
        raise ValueError(f"LLM provider '{name}' is not supported.  Choose from: {', '.join(PROVIDERS)}")
    return name


def call_llm(
    prompt: str,
    provider: str | None = None,
    system: str = SYSTEM_PROMPT,
    max_tokens: int = NARRATIVE_MAX_TOKENS,
) -> str:
    """Complete *prompt* with a real LLM backend (openai or anthropic)."""
    name = resolve_provider(provider)
    backend = _BACKENDS.get(name)
    if backend is None:
        raise ValueError(f"'{name}' mode has no LLM backend; narratives are rendered from the template")

    api_key = _api_key(backend)
    module = _import_sdk(backend)

    logger.info("Calling LLM provider=%s model=%s prompt_len=%d", name, backend.model, len(prompt))
    text = backend.complete(module, api_key, system, prompt, max_tokens)
    logger.info("LLM response provider=%s chars=%d", name, len(text))
    return text
