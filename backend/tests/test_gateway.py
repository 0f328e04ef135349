"""
Tests for the OpenAI completion gateway, with a stand-in client.

Run with: pytest backend/tests/test_gateway.py -v
"""

import asyncio
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from council.services.debate.errors import GatewayError
from council.services.debate.gateway import (
    CompletionGateway,
    OpenAICompletionGateway,
    build_messages,
)


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    """Async chunk stream; hangs after the chunks when hang=True. Records close()."""

    def __init__(self, chunks, fail_after=None, hang=False):
        self.chunks = chunks
        self.fail_after = fail_after
        self.hang = hang
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        self.closed = True

    async def __aiter__(self):
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i == self.fail_after:
                raise OpenAIError("connection reset")
            yield chunk
        if self.hang:
            await asyncio.Event().wait()


class FakeClient:
    """Mimics client.chat.completions.create()."""

    def __init__(self, reply):
        self.reply = reply
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self.create))

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


def test_build_messages_appends_feedback():
    messages = build_messages("Be a skeptic.", "Price?", "CRITICAL FEEDBACK FROM JUDGE: more data.")

    assert messages == [
        {"role": "system", "content": "Be a skeptic."},
        {"role": "user", "content": "Price?"},
        {"role": "user", "content": "CRITICAL FEEDBACK FROM JUDGE: more data."},
    ]
    assert len(build_messages("Be a skeptic.", "Price?")) == 2


@pytest.mark.asyncio
async def test_complete_returns_reply_text():
    client = FakeClient(_response("Charge by value."))
    gateway = OpenAICompletionGateway(model="gpt-4o-mini", client=client)

    text = await gateway.complete("Be a realist.", "Price?")

    assert text == "Charge by value."
    assert client.requests[0]["model"] == "gpt-4o-mini"
    assert "response_format" not in client.requests[0]


@pytest.mark.asyncio
async def test_json_mode_requests_json_object():
    client = FakeClient(_response('{"score": 90}'))
    gateway = OpenAICompletionGateway(model="gpt-4o", client=client)

    await gateway.complete("Judge.", "Drafts", json_mode=True)

    assert client.requests[0]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [OpenAIError("rate limited"), _response(""), _response(None)])
async def test_complete_failures_become_gateway_errors(reply):
    gateway = OpenAICompletionGateway(model="gpt-4o-mini", client=FakeClient(reply))

    with pytest.raises(GatewayError):
        await gateway.complete("Be a realist.", "Price?")


@pytest.mark.asyncio
async def test_stream_yields_non_empty_deltas():
    stream = FakeStream([_chunk("Charge "), _chunk(None), SimpleNamespace(choices=[]), _chunk("by value.")])
    client = FakeClient(stream)
    gateway = OpenAICompletionGateway(model="gpt-4o-mini", client=client)

    chunks = [c async for c in gateway.stream_complete("Be a realist.", "Price?")]

    assert chunks == ["Charge ", "by value."]
    assert client.requests[0]["stream"] is True
    assert stream.closed is True


@pytest.mark.asyncio
async def test_stream_failure_midway_becomes_gateway_error():
    stream = FakeStream([_chunk("Charge "), _chunk("by value.")], fail_after=1)
    gateway = OpenAICompletionGateway(model="gpt-4o-mini", client=FakeClient(stream))

    received = []
    with pytest.raises(GatewayError):
        async for chunk in gateway.stream_complete("Be a realist.", "Price?"):
            received.append(chunk)

    assert received == ["Charge "]
    assert stream.closed is True


@pytest.mark.asyncio
async def test_stream_is_closed_when_interrupted_by_timeout():
    stream = FakeStream([_chunk("Charge ")], hang=True)
    gateway = OpenAICompletionGateway(model="gpt-4o-mini", client=FakeClient(stream))
    received = []

    async def consume():
        async for chunk in gateway.stream_complete("Be a realist.", "Price?"):
            received.append(chunk)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(consume(), timeout=0.05)

    assert received == ["Charge "]
    assert stream.closed is True


@pytest.mark.asyncio
async def test_default_stream_is_one_chunk():
    class OneShot(CompletionGateway):
        async def complete(self, system_instruction, user_message, prior_feedback=None, *, json_mode=False):
            return "whole reply"

    gateway = OneShot()

    assert gateway.supports_streaming is False
    assert [c async for c in gateway.stream_complete("sys", "user")] == ["whole reply"]
