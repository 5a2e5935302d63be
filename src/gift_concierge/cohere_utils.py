"""Cohere adapters: the Reasoning Port over chat and the query embedder over /embed."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
import urllib.error
import urllib.request

from gift_concierge.concurrency import run_with_timeout
from gift_concierge.config import env_float, env_int
from gift_concierge.errors import ReasoningError, RetrievalError
from gift_concierge.ports import PromptSpec


_LOGGER = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.cohere.com/v2"
_DEFAULT_CHAT_MODEL = "command-r-08-2024"
_RETRYABLE_STATUS = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class CohereConfig:
    chat_model: str
    story_model: str
    embed_model: str

    @classmethod
    def from_env(cls) -> "CohereConfig":
        chat_model = os.getenv("GC_CHAT_MODEL", _DEFAULT_CHAT_MODEL)
        return cls(
            chat_model=chat_model,
            story_model=os.getenv("GC_STORY_MODEL", chat_model),
            embed_model=os.getenv("GC_EMBED_MODEL", "embed-v4.0"),
        )


def _endpoint_overrides() -> dict[str, Any]:
    """Optional JSON file (GC_COHERE_CONFIG_PATH) for private deployments."""
    config_path = os.getenv("GC_COHERE_CONFIG_PATH", "").strip()
    if not config_path:
        return {}
    path = Path(config_path)
    if not path.is_file():
        return {}
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        _LOGGER.warning("Ignoring unreadable Cohere endpoint file %s.", path)
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass(frozen=True)
class CohereEndpoint:
    api_key: str
    base_url: str = _DEFAULT_BASE_URL
    timeout_seconds: float = 20.0
    max_retries: int = 1

    @classmethod
    def resolve(cls) -> "CohereEndpoint":
        """Environment first, then the override file, then defaults."""
        overrides = _endpoint_overrides()
        api_key = os.getenv("COHERE_API_KEY", "").strip() or str(overrides.get("api_key", "")).strip()
        if not api_key:
            raise RuntimeError("COHERE_API_KEY is not set.")
        base_url = os.getenv("COHERE_API_BASE_URL", "").strip() or str(overrides.get("base_url", "")).strip()
        return cls(
            api_key=api_key,
            base_url=(base_url or _DEFAULT_BASE_URL).rstrip("/"),
            timeout_seconds=env_float("GC_COHERE_TIMEOUT_SECONDS", float(overrides.get("timeout_seconds") or 20.0)),
            max_retries=env_int("GC_COHERE_MAX_RETRIES", int(overrides.get("max_retries") or 1), allow_zero=True),
        )


def ai_configured() -> bool:
    if os.getenv("COHERE_API_KEY", "").strip():
        return True
    return bool(str(_endpoint_overrides().get("api_key", "")).strip())


def _strip_fences(text: str) -> str:
    if not text.startswith("```"):
        return text
    body_start = text.find("\n")
    body_end = text.rfind("```")
    if body_start == -1 or body_end <= body_start:
        return text
    return text[body_start:body_end].strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """First JSON object in a model reply, tolerating code fences and chatter around it."""
    raw = _strip_fences((text or "").strip())
    if not raw:
        raise ValueError("Model returned an empty response.")

    attempts = [raw]
    first, last = raw.find("{"), raw.rfind("}")
    if first != -1 and last > first:
        attempts.append(raw[first : last + 1])
    for attempt in attempts:
        try:
            parsed = json.loads(attempt)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError(f"Could not parse a JSON object from the model response: {raw[:200]}")


def _message_text(payload: dict[str, Any]) -> str:
    message = payload.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        return "\n".join(
            chunk["text"] for chunk in content if isinstance(chunk, dict) and isinstance(chunk.get("text"), str)
        ).strip()
    return ""


def _float_rows(payload: dict[str, Any]) -> list[list[float]]:
    embeddings = payload.get("embeddings")
    rows = embeddings.get("float") if isinstance(embeddings, dict) else embeddings
    if not isinstance(rows, list):
        return []
    vectors: list[list[float]] = []
    for row in rows:
        if not isinstance(row, list):
            continue
        try:
            vectors.append([float(value) for value in row])
        except (TypeError, ValueError):
            continue
    return vectors


class CohereClient:
    def __init__(self, endpoint: CohereEndpoint) -> None:
        self.endpoint = endpoint

    def _request(self, path: str, payload: dict[str, Any]) -> urllib.request.Request:
        return urllib.request.Request(
            f"{self.endpoint.base_url}{path}",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.endpoint.api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            method="POST",
        )

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        request = self._request(path, payload)
        timeout = max(1.0, self.endpoint.timeout_seconds)
        attempts = max(0, self.endpoint.max_retries) + 1
        for attempt in range(attempts):
            final = attempt == attempts - 1
            try:
                with urllib.request.urlopen(request, timeout=timeout) as response:
                    return json.loads(response.read().decode("utf-8"))
            except urllib.error.HTTPError as exc:
                detail = exc.read().decode("utf-8", errors="ignore") or exc.reason
                if final or exc.code not in _RETRYABLE_STATUS:
                    raise RuntimeError(f"Cohere {path} returned {exc.code}: {detail}") from exc
                _LOGGER.info("Cohere %s returned %s; retrying.", path, exc.code)
            except urllib.error.URLError as exc:
                if final:
                    raise RuntimeError(f"Cohere {path} unreachable: {exc.reason}") from exc
                _LOGGER.info("Cohere %s unreachable (%s); retrying.", path, exc.reason)
            time.sleep(0.4 * (2**attempt))
        raise RuntimeError(f"Cohere {path} failed after {attempts} attempt(s).")

    def chat_json(self, *, prompt: str, model: str, temperature: float) -> dict[str, Any]:
        response = self._post_json(
            "/chat",
            {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "response_format": {"type": "json_object"},
            },
        )
        return parse_json_object(_message_text(response))

    def embed_query(self, *, text: str, model: str) -> list[float]:
        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Cannot embed an empty query.")
        response = self._post_json(
            "/embed",
            {"model": model, "texts": [cleaned], "input_type": "search_query", "embedding_types": ["float"]},
        )
        vectors = _float_rows(response)
        if len(vectors) != 1:
            raise RuntimeError("Cohere embedding response shape mismatch.")
        return vectors[0]


def make_client() -> CohereClient:
    return CohereClient(CohereEndpoint.resolve())


class _LazyClient:
    """Builds the client on first use so the service starts without credentials."""

    def __init__(self, factory: Callable[[], CohereClient]) -> None:
        self._factory = factory
        self._client: CohereClient | None = None

    def get(self) -> CohereClient:
        if self._client is None:
            self._client = self._factory()
        return self._client


class CohereReasoning:
    # User-facing prose goes to the story model.
    _STORY_PROMPTS = frozenset({"story", "framing"})

    def __init__(
        self,
        *,
        cfg: CohereConfig,
        timeout_seconds: float,
        client_factory: Callable[[], CohereClient] = make_client,
    ) -> None:
        self.cfg = cfg
        self.timeout_seconds = timeout_seconds
        self._client = _LazyClient(client_factory)

    def complete(self, spec: PromptSpec) -> dict[str, Any]:
        model = self.cfg.story_model if spec.name in self._STORY_PROMPTS else self.cfg.chat_model
        prompt = spec.render()
        try:
            return run_with_timeout(
                f"{spec.name} reasoning request",
                lambda: self._client.get().chat_json(prompt=prompt, model=model, temperature=spec.temperature),
                self.timeout_seconds,
            )
        except TimeoutError as exc:
            raise ReasoningError("timeout", str(exc)) from exc
        except ValueError as exc:
            raise ReasoningError("malformed", str(exc)) from exc
        except Exception as exc:
            raise ReasoningError("upstream", f"{spec.name} reasoning request failed: {exc}") from exc


class CohereEmbedder:
    def __init__(
        self,
        *,
        cfg: CohereConfig,
        timeout_seconds: float,
        client_factory: Callable[[], CohereClient] = make_client,
    ) -> None:
        self.cfg = cfg
        self.timeout_seconds = timeout_seconds
        self._client = _LazyClient(client_factory)

    def embed(self, text: str) -> list[float]:
        try:
            return run_with_timeout(
                "Query embedding request",
                lambda: self._client.get().embed_query(text=text, model=self.cfg.embed_model),
                self.timeout_seconds,
            )
        except Exception as exc:
            raise RetrievalError(f"Query embedding failed: {exc}") from exc
