from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import GeneratorConfig
from ..domain.errors import GenerationError

# Optional import: langchain-openai
try:
    from langchain_openai import ChatOpenAI  # type: ignore
except Exception:  # pragma: no cover - optional import
    ChatOpenAI = None  # type: ignore


LOG = logging.getLogger("physarum.llm")

NO_RESPONSE_TEXT = "No response received"


class Generator(Protocol):
    def generate(self, prompt: str) -> str: ...

    def generate_with_image(self, prompt: str, image_data_url: str) -> str: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST", "GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _user_message(prompt: str, image_data_url: str | None = None) -> Dict[str, Any]:
    if not image_data_url:
        return {"role": "user", "content": prompt}
    return {
        "role": "user",
        "content": [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": image_data_url, "detail": "high"}},
        ],
    }


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text") or ""))
        return "".join(parts)
    return ""


class OpenRouterGenerator:
    """Hosted model reached through an OpenAI-compatible endpoint."""

    def __init__(self, config: GeneratorConfig) -> None:
        if ChatOpenAI is None:
            raise GenerationError("LLM client not available")
        if not config.api_key:
            raise GenerationError("LLM not configured: missing API key")
        self.config = config
        self._llm = ChatOpenAI(
            api_key=config.api_key,
            base_url=config.resolved_base_url,
            model=config.model,
            temperature=config.temperature,
            timeout=config.timeout,
        )

    def _invoke(self, message: Dict[str, Any]) -> str:
        LOG.debug("openrouter_invoke", extra={"model": self.config.model})
        try:
            res = self._llm.invoke([message])
        except Exception as exc:
            LOG.warning("openrouter_invoke_failed", extra={"model": self.config.model, "err": str(exc)})
            raise GenerationError(f"API Error: {exc}") from exc
        text = _content_text(res.content if hasattr(res, "content") else res)
        return text or NO_RESPONSE_TEXT

    def generate(self, prompt: str) -> str:
        return self._invoke(_user_message(prompt))

    def generate_with_image(self, prompt: str, image_data_url: str) -> str:
        return self._invoke(_user_message(prompt, image_data_url))


class LocalGenerator:
    """OpenAI-style chat completions served from a local host."""

    def __init__(self, config: GeneratorConfig) -> None:
        self.config = config
        self.base_url = config.resolved_base_url
        self._session = _build_session()

    def _post(self, message: Dict[str, Any]) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        LOG.debug("local_llm_invoke", extra={"model": self.config.model, "base_url": self.base_url})
        try:
            resp = self._session.post(
                f"{self.base_url}/v1/chat/completions",
                json={"model": self.config.model, "messages": [message], "stream": False},
                headers=headers,
                timeout=(3, self.config.timeout),
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.HTTPError as exc:
            detail = exc.response.text if exc.response is not None else ""
            message = f"API Error: {exc}, Details: {detail}" if detail else f"API Error: {exc}"
            LOG.warning("local_llm_http_error", extra={"base_url": self.base_url, "err": str(exc)})
            raise GenerationError(message) from exc
        except (requests.exceptions.RequestException, ValueError) as exc:
            LOG.warning("local_llm_failed", extra={"base_url": self.base_url, "err": str(exc)})
            raise GenerationError(f"API Error: {exc}") from exc
        if not isinstance(data, dict):
            raise GenerationError("API Error: malformed response payload")
        choices = data.get("choices") or []
        if choices and isinstance(choices[0], dict):
            content = _content_text((choices[0].get("message") or {}).get("content"))
            if content:
                return content
        return data.get("response") or data.get("text") or NO_RESPONSE_TEXT

    def generate(self, prompt: str) -> str:
        return self._post(_user_message(prompt))

    def generate_with_image(self, prompt: str, image_data_url: str) -> str:
        return self._post(_user_message(prompt, image_data_url))


def build_generator(config: GeneratorConfig) -> Generator:
    if config.provider == "local":
        LOG.info("Using local LLM provider base_url=%s model=%s", config.resolved_base_url, config.model)
        return LocalGenerator(config)
    if config.provider != "openrouter":
        raise GenerationError(f"Unknown provider: {config.provider}")
    LOG.info("Using remote LLM provider model=%s base_url=%s", config.model, config.resolved_base_url)
    return OpenRouterGenerator(config)


class DeferredGenerator:
    """Builds the configured client on first use.

    Construction problems (missing key, unknown provider) then surface as a
    ``GenerationError`` on the call itself and resolve the pending entry like
    any other remote failure.
    """

    def __init__(self, config: GeneratorConfig) -> None:
        self.config = config
        self._impl: Generator | None = None

    def _client(self) -> Generator:
        if self._impl is None:
            self._impl = build_generator(self.config)
        return self._impl

    def generate(self, prompt: str) -> str:
        return self._client().generate(prompt)

    def generate_with_image(self, prompt: str, image_data_url: str) -> str:
        return self._client().generate_with_image(prompt, image_data_url)
