"""Ticket-style workflow for providers that work out of band."""

from loguru import logger

from morpheum.agent.formatting import Sender, send_markdown
from morpheum.agent.rooms import TaskContext
from morpheum.agent.state import Conversation, Role, StopReason, TaskOutcome
from morpheum.providers.base import DualRendering, ProgressChunk, coerce_chunk


class TicketRunner:
    """Hands the task to the provider and relays its progress to the room.

    No system prompt and no sandbox: the provider runs the work itself and
    the value its call resolves with becomes the only assistant turn.
    """

    async def run(self, task: str, ctx: TaskContext, send: Sender) -> TaskOutcome:
        conversation = Conversation()
        conversation.append(Role.USER, task)

        async def relay(chunk: ProgressChunk | str) -> None:
            chunk = coerce_chunk(chunk)
            if isinstance(chunk, DualRendering):
                await send(chunk.text, chunk.html)
            else:
                await send_markdown(chunk.text, send)

        logger.info(f"Starting ticket session with {ctx.identity.describe()}")
        response = await ctx.client.send_streaming(task, relay)
        conversation.append(Role.ASSISTANT, response)
        return TaskOutcome(conversation, StopReason.SESSION_RESOLVED)
