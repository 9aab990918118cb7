from __future__ import annotations

import pytest

from morpheum.agent.loop import IterativeRunner
from morpheum.agent.rooms import TaskContext
from morpheum.agent.state import Role, StopReason
from morpheum.errors import ProviderError
from morpheum.providers.base import LLMClient, PlainText, ProviderIdentity


class _ScriptedClient(LLMClient):
    def __init__(self, responses: list[str]) -> None:
        super().__init__(ProviderIdentity("ollama", "stub-model"))
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def send_streaming(self, prompt, on_chunk):
        self.prompts.append(prompt)
        response = self.responses.pop(0) if self.responses else self.responses_default()
        await on_chunk(PlainText(response[:5]))
        return response

    def responses_default(self) -> str:
        return "<next_step>keep going</next_step>\n```bash\ntrue\n```"


class _RecordingSandbox:
    def __init__(self, output: str = "ok") -> None:
        self.output = output
        self.commands: list[str] = []

    async def execute(self, command: str) -> str:
        self.commands.append(command)
        return self.output

    def describe(self) -> str:
        return "stub sandbox"


class _Room:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str | None]] = []

    async def send(self, text: str, html: str | None = None) -> None:
        self.messages.append((text, html))

    @property
    def texts(self) -> list[str]:
        return [m[0] for m in self.messages]


def _ctx(client: LLMClient, sandbox: _RecordingSandbox) -> TaskContext:
    return TaskContext(identity=client.identity, client=client, sandbox=sandbox)


@pytest.mark.asyncio
async def test_single_command_runs_once_then_next_iteration() -> None:
    client = _ScriptedClient(
        [
            "<plan>make a file</plan><next_step>create it</next_step>\n```bash\ntouch f\n```",
            "<next_step>Job's done!</next_step>",
        ]
    )
    sandbox = _RecordingSandbox("")
    room = _Room()

    outcome = await IterativeRunner().run("create a file", _ctx(client, sandbox), room.send)

    assert sandbox.commands == ["touch f"]
    assert len(outcome.conversation.by_role(Role.TOOL)) == 1
    assert outcome.iterations == 2
    assert outcome.reason is StopReason.NEXT_STEP_COMPLETE
    assert "🧠 Iteration 2: Analyzing and planning..." in room.texts
    assert any(t.startswith("📋 **Plan:**") for t in room.texts)


@pytest.mark.asyncio
async def test_only_first_of_several_commands_executes() -> None:
    client = _ScriptedClient(
        [
            "```bash\necho one\n```\n```bash\necho two\n```\n```bash\necho three\n```",
            "all finished",
        ]
    )
    sandbox = _RecordingSandbox()
    outcome = await IterativeRunner().run("t", _ctx(client, sandbox), _Room().send)

    assert sandbox.commands == ["echo one"]
    assert outcome.reason is StopReason.NO_COMMAND


@pytest.mark.asyncio
async def test_completion_in_next_step_skips_command() -> None:
    client = _ScriptedClient(["<next_step>Job's done!</next_step>\n```bash\nrm -rf build\n```"])
    sandbox = _RecordingSandbox()
    room = _Room()

    outcome = await IterativeRunner().run("t", _ctx(client, sandbox), room.send)

    assert sandbox.commands == []
    assert outcome.reason is StopReason.NEXT_STEP_COMPLETE
    assert room.texts[-1] == "✓ Job's done!"
    assert any("🎯 **Next Step:**" in t for t in room.texts)


@pytest.mark.asyncio
async def test_completion_marker_in_output_stops() -> None:
    client = _ScriptedClient(["```bash\n./finish.sh\n```"])
    sandbox = _RecordingSandbox("all tests pass\nJob's done!")

    outcome = await IterativeRunner().run("t", _ctx(client, sandbox), _Room().send)

    assert outcome.reason is StopReason.OUTPUT_COMPLETE
    assert outcome.commands_run == 1


@pytest.mark.asyncio
async def test_loop_stops_after_max_iterations() -> None:
    client = _ScriptedClient([])  # always proposes another command
    sandbox = _RecordingSandbox("still working")
    room = _Room()

    outcome = await IterativeRunner().run("never ends", _ctx(client, sandbox), room.send)

    assert outcome.reason is StopReason.EXHAUSTED
    assert outcome.iterations == 10
    assert len(client.prompts) == 10
    assert len(sandbox.commands) == 10
    assert "Stopped after 10 iterations" in room.texts[-1]
    assert "Error" not in room.texts[-1]


@pytest.mark.asyncio
async def test_conversation_serialized_as_role_blocks() -> None:
    client = _ScriptedClient(["```bash\nls\n```", "done"])
    sandbox = _RecordingSandbox("a.txt")
    runner = IterativeRunner(system_prompt="SYS")

    outcome = await runner.run("list files", _ctx(client, sandbox), _Room().send)

    assert client.prompts[0] == "system: SYS\n\nuser: list files"
    assert client.prompts[1] == (
        "system: SYS\n\nuser: list files\n\nassistant: ```bash\nls\n```\n\ntool: a.txt"
    )
    roles = [t.role for t in outcome.conversation.turns]
    assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]


@pytest.mark.asyncio
async def test_raw_chunks_not_forwarded_to_room() -> None:
    client = _ScriptedClient(["no command here"])
    room = _Room()
    await IterativeRunner().run("t", _ctx(client, _RecordingSandbox()), room.send)
    assert "no co" not in room.texts


@pytest.mark.asyncio
async def test_provider_errors_propagate() -> None:
    class _Failing(_ScriptedClient):
        async def send_streaming(self, prompt, on_chunk):
            raise ProviderError("boom")

    sandbox = _RecordingSandbox()
    with pytest.raises(ProviderError):
        await IterativeRunner().run("t", _ctx(_Failing([]), sandbox), _Room().send)
    assert sandbox.commands == []


@pytest.mark.asyncio
async def test_sandbox_error_text_is_ordinary_output() -> None:
    client = _ScriptedClient(["```bash\nbadcmd\n```", "<next_step>Job's done!</next_step>"])
    sandbox = _RecordingSandbox("sh: badcmd: not found\n\nExit code: 127")

    outcome = await IterativeRunner().run("t", _ctx(client, sandbox), _Room().send)

    assert outcome.conversation.by_role(Role.TOOL)[0].content.startswith("sh: badcmd")
    assert outcome.reason is StopReason.NEXT_STEP_COMPLETE
