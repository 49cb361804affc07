import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APITimeoutError, BadRequestError

from labwatch.clients.llm import LLMError, LLMTransientError, MistralChatClient, parse_json_object


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class StubCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(*outcomes):
    completions = StubCompletions(outcomes)
    stub = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    client = MistralChatClient("key", client=stub, sleep=lambda _: None)
    return client, completions


_REQUEST = httpx.Request("POST", "https://api.mistral.ai/v1/chat/completions")


def test_complete_json_uses_json_mode_and_decodes_object():
    client, completions = _client(_response('{"company_name": "Periodic Labs"}'))
    payload = client.complete_json(system_prompt="sys", user_payload={"title": "t"})
    assert payload == {"company_name": "Periodic Labs"}
    call = completions.calls[0]
    assert call["temperature"] == 0
    assert call["response_format"] == {"type": "json_object"}
    assert json.loads(call["messages"][1]["content"]) == {"title": "t"}


def test_non_object_content_is_none():
    client, _ = _client(_response("[1, 2]"))
    assert client.complete_json(system_prompt="s", user_payload={}) is None
    client, _ = _client(_response(None))
    assert client.complete_json(system_prompt="s", user_payload={}) is None


def test_timeout_is_retried_once():
    client, completions = _client(
        APITimeoutError(request=_REQUEST),
        _response('{"company_name": null}'),
    )
    assert client.complete_json(system_prompt="s", user_payload={}) == {"company_name": None}
    assert len(completions.calls) == 2


def test_repeated_timeout_raises_transient_error():
    client, _ = _client(APITimeoutError(request=_REQUEST), APITimeoutError(request=_REQUEST))
    with pytest.raises(LLMTransientError) as exc_info:
        client.complete_json(system_prompt="s", user_payload={})
    assert exc_info.value.code == "LLM_TIMEOUT"


def test_client_error_is_not_retried():
    error = BadRequestError(
        "bad request", response=httpx.Response(400, request=_REQUEST), body=None
    )
    client, completions = _client(error)
    with pytest.raises(LLMError) as exc_info:
        client.complete_json(system_prompt="s", user_payload={})
    assert exc_info.value.code == "LLM_400"
    assert len(completions.calls) == 1


def test_parse_json_object():
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object("not json") is None
    assert parse_json_object("") is None


def test_requires_api_key():
    with pytest.raises(ValueError):
        MistralChatClient("")
