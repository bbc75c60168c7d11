"""Settings for the chat core.

Values are resolved once from the environment (or an explicit mapping in
tests) into frozen dataclasses and handed to the services at construction
time. Nothing here is mutated after start-up; switching model or provider
means building a new ``GeneratorConfig`` and passing it to
``ChatService.reconfigure``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple


DEFAULT_MODEL = "google/gemini-2.0-pro-exp-02-05:free"

DEFAULT_BASE_URLS: Dict[str, str] = {
    "openrouter": "https://openrouter.ai/api/v1",
    "local": "http://127.0.0.1:11434",
}


@dataclass(frozen=True)
class GeneratorConfig:
    """Connection details for the remote model."""

    provider: str = "openrouter"
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 90.0
    temperature: float = 0.2

    @property
    def resolved_base_url(self) -> str:
        url = self.base_url or DEFAULT_BASE_URLS.get(self.provider) or DEFAULT_BASE_URLS["openrouter"]
        return url.rstrip("/")

    def with_overrides(self, **changes: object) -> "GeneratorConfig":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


@dataclass(frozen=True)
class AppSettings:
    workspace_roots: Tuple[Path, ...] = field(default_factory=lambda: (Path.cwd(),))
    max_depth: int = 3
    chunk_size: int = 5
    chunk_delay: float = 0.03
    max_file_bytes: int = 1024 * 1024
    max_prompt_file_chars: int = 100_000
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_generator_config(env: Optional[Mapping[str, str]] = None) -> GeneratorConfig:
    env = env if env is not None else os.environ
    provider = (env.get("PHYSARUM_PROVIDER") or "openrouter").strip().lower()
    api_key = env.get("PHYSARUM_API_KEY") or env.get("OPENROUTER_API_KEY") or None
    return GeneratorConfig(
        provider=provider,
        model=(env.get("PHYSARUM_MODEL") or DEFAULT_MODEL).strip(),
        api_key=api_key,
        base_url=(env.get("PHYSARUM_BASE_URL") or "").strip() or None,
        timeout=_float(env, "PHYSARUM_LLM_TIMEOUT", 90.0),
        temperature=_float(env, "PHYSARUM_LLM_TEMPERATURE", 0.2),
    )


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    env = env if env is not None else os.environ
    raw_roots = (env.get("PHYSARUM_WORKSPACE_ROOTS") or "").strip()
    if raw_roots:
        roots = tuple(Path(p).expanduser() for p in raw_roots.split(os.pathsep) if p.strip())
    else:
        roots = (Path.cwd(),)
    return AppSettings(
        workspace_roots=roots,
        max_depth=max(1, _int(env, "PHYSARUM_TREE_DEPTH", 3)),
        chunk_size=max(1, _int(env, "PHYSARUM_CHUNK_SIZE", 5)),
        chunk_delay=max(0.0, _float(env, "PHYSARUM_CHUNK_DELAY", 0.03)),
        max_file_bytes=_int(env, "PHYSARUM_MAX_FILE_BYTES", 1024 * 1024),
        max_prompt_file_chars=_int(env, "PHYSARUM_MAX_PROMPT_FILE_CHARS", 100_000),
        generator=load_generator_config(env),
    )
