"""Iterative plan/execute loop for chat-style providers."""

from loguru import logger

from morpheum.agent.formatting import Sender, format_command, format_command_output, send_markdown
from morpheum.agent.parser import parse_bash_commands, parse_plan_and_next_step
from morpheum.agent.prompts import COMPLETION_MARKER, SYSTEM_PROMPT
from morpheum.agent.rooms import TaskContext
from morpheum.agent.state import Conversation, Role, StopReason, TaskOutcome
from morpheum.providers.base import ProgressChunk

MAX_ITERATIONS = 10

DONE_MESSAGE = f"✓ {COMPLETION_MARKER}"


async def _ignore_chunk(_chunk: ProgressChunk) -> None:
    # Raw tokens would flood the room; structured progress is sent instead.
    return None


class IterativeRunner:
    """
    Drives a model through plan, execute and evaluate rounds.

    Each round the whole conversation goes to the model as one prompt; the
    first shell block in the reply (and only that one) runs in the sandbox
    and its output is fed back as a ``tool`` turn.
    """

    def __init__(self, max_iterations: int = MAX_ITERATIONS, system_prompt: str = SYSTEM_PROMPT):
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt

    async def run(self, task: str, ctx: TaskContext, send: Sender) -> TaskOutcome:
        conversation = Conversation()
        conversation.append(Role.SYSTEM, self.system_prompt)
        conversation.append(Role.USER, task)
        commands_run = 0

        for i in range(self.max_iterations):
            await send(f"🧠 Iteration {i + 1}: Analyzing and planning...", None)

            response = await ctx.client.send_streaming(conversation.to_prompt(), _ignore_chunk)
            await send("💭 Analysis complete. Processing response...", None)
            conversation.append(Role.ASSISTANT, response)

            parsed = parse_plan_and_next_step(response)
            if parsed.plan:
                await send_markdown(f"📋 **Plan:**\n\n{parsed.plan}", send)
            if parsed.next_step:
                await send_markdown(f"🎯 **Next Step:**\n\n{parsed.next_step}", send)
                if COMPLETION_MARKER in parsed.next_step:
                    await send(DONE_MESSAGE, None)
                    return TaskOutcome(conversation, StopReason.NEXT_STEP_COMPLETE, i + 1, commands_run)

            commands = parse_bash_commands(response)
            if not commands:
                # Nothing left to run: the model considers the task finished.
                await send(DONE_MESSAGE, None)
                return TaskOutcome(conversation, StopReason.NO_COMMAND, i + 1, commands_run)
            if len(commands) > 1:
                logger.debug(f"Model proposed {len(commands)} commands; running the first only")

            command = commands[0]
            await send_markdown(format_command(command), send)
            logger.info(f"Executing in {ctx.sandbox.describe()}: {command[:120]}")
            output = await ctx.sandbox.execute(command)
            commands_run += 1
            conversation.append(Role.TOOL, output)
            await send_markdown(format_command_output(output), send)

            if COMPLETION_MARKER in output:
                await send(DONE_MESSAGE, None)
                return TaskOutcome(conversation, StopReason.OUTPUT_COMPLETE, i + 1, commands_run)

        logger.info(f"Task stopped after {self.max_iterations} iterations without completion")
        await send(
            f"⏹️ Stopped after {self.max_iterations} iterations without a completion signal. "
            "Send a follow-up task to continue.",
            None,
        )
        return TaskOutcome(conversation, StopReason.EXHAUSTED, self.max_iterations, commands_run)
