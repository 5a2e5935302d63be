"""
Tests for the Cohere adapters, with the HTTP client replaced by fakes
"""
import json
import time

import pytest

from gift_concierge.cohere_utils import (
    CohereConfig,
    CohereEmbedder,
    CohereEndpoint,
    CohereReasoning,
    ai_configured,
    parse_json_object,
)
from gift_concierge.errors import ReasoningError, RetrievalError
from gift_concierge.ports import PromptSpec


COHERE_CFG = CohereConfig(chat_model="chat-m", story_model="story-m", embed_model="embed-m")


class FakeClient:
    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.models = []

    def chat_json(self, *, prompt, model, temperature):
        self.models.append(model)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    def embed_query(self, *, text, model):
        if self.error is not None:
            raise self.error
        return [0.1, 0.2]


def _spec(name="listener"):
    return PromptSpec(name=name, instruction="Extract.", response_shape="{}", payload={"query": "gift"})


@pytest.mark.parametrize(
    "text",
    [
        '{"a": 1}',
        '```json\n{"a": 1}\n```',
        'Sure! Here you go: {"a": 1} hope that helps',
    ],
)
def test_parse_json_object_tolerates_wrapping(text):
    assert parse_json_object(text) == {"a": 1}


@pytest.mark.parametrize("text", ["", "no json here", "[1, 2, 3]"])
def test_parse_json_object_rejects_non_objects(text):
    with pytest.raises(ValueError):
        parse_json_object(text)


def test_prompt_render_embeds_payload():
    rendered = _spec().render()
    assert rendered.startswith("Extract.")
    assert json.dumps({"query": "gift"}) in rendered


def test_reasoning_routes_story_prompts_to_story_model():
    client = FakeClient(reply={"ok": True})
    reasoning = CohereReasoning(cfg=COHERE_CFG, timeout_seconds=5.0, client_factory=lambda: client)
    assert reasoning.complete(_spec("listener")) == {"ok": True}
    reasoning.complete(_spec("story"))
    assert client.models == ["chat-m", "story-m"]


@pytest.mark.parametrize(
    "client,kind",
    [
        (FakeClient(error=ValueError("not json")), "malformed"),
        (FakeClient(error=RuntimeError("Cohere /chat returned 503")), "upstream"),
        (FakeClient(reply={}, delay=0.5), "timeout"),
    ],
)
def test_reasoning_failures_are_classified(client, kind):
    reasoning = CohereReasoning(cfg=COHERE_CFG, timeout_seconds=0.1, client_factory=lambda: client)
    with pytest.raises(ReasoningError) as excinfo:
        reasoning.complete(_spec())
    assert excinfo.value.kind == kind


def test_missing_api_key_is_an_upstream_failure(monkeypatch):
    monkeypatch.delenv("COHERE_API_KEY", raising=False)
    monkeypatch.delenv("GC_COHERE_CONFIG_PATH", raising=False)
    reasoning = CohereReasoning(cfg=COHERE_CFG, timeout_seconds=5.0)
    with pytest.raises(ReasoningError) as excinfo:
        reasoning.complete(_spec())
    assert excinfo.value.kind == "upstream"
    assert ai_configured() is False


def test_embedder_wraps_failures():
    ok = CohereEmbedder(cfg=COHERE_CFG, timeout_seconds=5.0, client_factory=lambda: FakeClient())
    assert ok.embed("tech gifts") == [0.1, 0.2]

    broken = CohereEmbedder(
        cfg=COHERE_CFG,
        timeout_seconds=5.0,
        client_factory=lambda: FakeClient(error=RuntimeError("down")),
    )
    with pytest.raises(RetrievalError):
        broken.embed("tech gifts")


def test_endpoint_resolution_prefers_environment(monkeypatch, tmp_path):
    override = tmp_path / "cohere.json"
    override.write_text(json.dumps({"api_key": "file-key", "base_url": "https://private.example/v2/", "max_retries": 3}))
    monkeypatch.setenv("GC_COHERE_CONFIG_PATH", str(override))
    monkeypatch.delenv("COHERE_API_KEY", raising=False)
    monkeypatch.delenv("COHERE_API_BASE_URL", raising=False)
    monkeypatch.setenv("GC_COHERE_MAX_RETRIES", "0")

    endpoint = CohereEndpoint.resolve()
    assert endpoint.api_key == "file-key"
    assert endpoint.base_url == "https://private.example/v2"
    assert endpoint.max_retries == 0
    assert ai_configured() is True

    monkeypatch.setenv("COHERE_API_KEY", "env-key")
    assert CohereEndpoint.resolve().api_key == "env-key"
