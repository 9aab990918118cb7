from __future__ import annotations

import json

import pytest

from morpheum.agent.rooms import TaskContext
from morpheum.agent.session import TicketRunner
from morpheum.agent.state import Role, StopReason
from morpheum.providers.base import (
    DUAL_MESSAGE_PREFIX,
    DualRendering,
    ExecutionMode,
    LLMClient,
    PlainText,
    ProviderIdentity,
    coerce_chunk,
    encode_dual,
)


class _TicketClient(LLMClient):
    mode = ExecutionMode.TICKET

    def __init__(self, chunks: list) -> None:
        super().__init__(ProviderIdentity("copilot", "owner/repo"))
        self.chunks = chunks
        self.prompts: list[str] = []

    async def send_streaming(self, prompt, on_chunk):
        self.prompts.append(prompt)
        for chunk in self.chunks:
            await on_chunk(chunk)
        return "session summary"


class _ForbiddenSandbox:
    async def execute(self, command: str) -> str:
        raise AssertionError("ticket mode must not touch the sandbox")

    def describe(self) -> str:
        return "forbidden"


class _Room:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str | None]] = []

    async def send(self, text: str, html: str | None = None) -> None:
        self.messages.append((text, html))


def _ctx(client: LLMClient) -> TaskContext:
    return TaskContext(identity=client.identity, client=client, sandbox=_ForbiddenSandbox())


@pytest.mark.asyncio
async def test_only_user_turn_sent_and_single_assistant_turn() -> None:
    client = _TicketClient([PlainText("working\n")])
    outcome = await TicketRunner().run("fix the bug", _ctx(client), _Room().send)

    assert client.prompts == ["fix the bug"]
    assert [t.role for t in outcome.conversation.turns] == [Role.USER, Role.ASSISTANT]
    assert outcome.conversation.turns[-1].content == "session summary"
    assert outcome.reason is StopReason.SESSION_RESOLVED


@pytest.mark.asyncio
async def test_dual_rendering_forwards_both_payloads() -> None:
    room = _Room()
    client = _TicketClient([DualRendering("plain", "<b>rich</b>")])
    await TicketRunner().run("t", _ctx(client), room.send)
    assert room.messages == [("plain", "<b>rich</b>")]


@pytest.mark.asyncio
async def test_legacy_marker_string_is_decoded() -> None:
    room = _Room()
    client = _TicketClient([encode_dual("frame text", "<iframe src='x'></iframe>")])
    await TicketRunner().run("t", _ctx(client), room.send)
    assert room.messages == [("frame text", "<iframe src='x'></iframe>")]


@pytest.mark.asyncio
async def test_malformed_marker_falls_back_to_raw_text() -> None:
    room = _Room()
    raw = DUAL_MESSAGE_PREFIX + "{not json"
    client = _TicketClient([raw])
    outcome = await TicketRunner().run("t", _ctx(client), room.send)

    assert room.messages[0][0] == raw
    assert outcome.conversation.turns[-1].content == "session summary"


@pytest.mark.asyncio
async def test_plain_markdown_chunk_gets_html() -> None:
    room = _Room()
    client = _TicketClient([PlainText("Issue [#5](https://github.com/o/r/issues/5) created\n")])
    await TicketRunner().run("t", _ctx(client), room.send)
    text, html = room.messages[0]
    assert html is not None and '<a href="https://github.com/o/r/issues/5">#5</a>' in html


def test_coerce_chunk_variants() -> None:
    assert coerce_chunk("hi") == PlainText("hi")
    assert coerce_chunk(PlainText("x")) == PlainText("x")
    payload = DUAL_MESSAGE_PREFIX + json.dumps({"text": "t", "html": "h"})
    assert coerce_chunk(payload) == DualRendering("t", "h")
    missing = DUAL_MESSAGE_PREFIX + json.dumps({"text": "t"})
    assert coerce_chunk(missing) == PlainText(missing)
    wrong_type = DUAL_MESSAGE_PREFIX + json.dumps({"text": 1, "html": "h"})
    assert coerce_chunk(wrong_type) == PlainText(wrong_type)
