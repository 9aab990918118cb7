"""Task engine: owns the global provider and dispatches tasks to runners."""

from loguru import logger

from morpheum.agent.formatting import Sender
from morpheum.agent.loop import IterativeRunner
from morpheum.agent.rooms import (
    ClientFactory,
    ProviderState,
    RoomConfigResolver,
    RoomStateStore,
    TaskContext,
)
from morpheum.agent.session import TicketRunner
from morpheum.agent.state import TaskOutcome
from morpheum.config.schema import Config
from morpheum.providers.base import ExecutionMode, ProviderIdentity
from morpheum.providers.factory import create_client, validate_credentials
from morpheum.sandbox.base import Sandbox
from morpheum.sandbox.jail import JailClient


class TaskEngine:
    """
    Runs free-text tasks.

    Holds the engine-wide provider (changed only by explicit switches) and a
    room resolver that may hand a task a project-specific context instead.
    """

    def __init__(
        self,
        config: Config,
        state: ProviderState,
        store: RoomStateStore | None = None,
        client_factory: ClientFactory = create_client,
    ):
        self.config = config
        self.state = state
        self.client_factory = client_factory
        self.rooms = RoomConfigResolver(store, state, config, client_factory=client_factory)
        self.runners = {
            ExecutionMode.ITERATIVE: IterativeRunner(config.agents.defaults.max_iterations),
            ExecutionMode.TICKET: TicketRunner(),
        }

    @classmethod
    def from_config(cls, config: Config, store: RoomStateStore | None = None) -> "TaskEngine":
        name = config.get_provider_name()
        client = create_client(name, config)
        sandbox = JailClient(config.sandbox.host, config.sandbox.port, float(config.sandbox.timeout))
        logger.info(f"Starting with {client.identity.describe()}, sandbox {sandbox.describe()}")
        return cls(config, ProviderState(client.identity, client, sandbox), store=store)

    @property
    def identity(self) -> ProviderIdentity:
        return self.state.identity

    def set_store(self, store: RoomStateStore) -> None:
        self.rooms.store = store

    def set_sandbox(self, sandbox: Sandbox) -> None:
        self.state.sandbox = sandbox
        logger.info(f"Sandbox is now {sandbox.describe()}")

    def switch_provider(
        self, name: str, target: str | None = None, base_url: str | None = None
    ) -> ProviderIdentity:
        """Make ``name`` the global provider. Raises ConfigurationError."""
        name = name.strip().lower()
        validate_credentials(name, self.config)
        providers = self.config.providers

        if name == "copilot":
            repository = target or providers.copilot.repository
            client = self.client_factory(name, self.config, target=repository)
            providers.copilot.repository = repository
        else:
            section = getattr(providers, name)
            client = self.client_factory(
                name,
                self.config,
                target=target or section.model,
                base_url=base_url or section.base_url,
            )
            section.model = target or section.model
            section.base_url = base_url or section.base_url

        # The previous client may still serve an in-flight task; it is not closed here.
        self.state.identity = client.identity
        self.state.client = client
        logger.info(f"Switched global provider to {client.identity.describe()}")
        return client.identity

    async def run(self, task: str, ctx: TaskContext, send: Sender) -> TaskOutcome:
        """Run ``task`` with the runner matching the context's client."""
        runner = self.runners[ctx.client.mode]
        return await runner.run(task, ctx, send)

    async def handle_task(self, task: str, send: Sender, room_id: str | None = None) -> TaskOutcome | None:
        """Entry point for a free-text task. Errors are reported to the room."""
        try:
            async with self.rooms.scope(room_id) as ctx:
                identity = ctx.identity
                await send(
                    f'🚀 Working on: "{task}" using {identity.kind} ({identity.target})...', None
                )
                return await self.run(task, ctx, send)
        except Exception as e:
            logger.exception(f"Task failed in room {room_id}: {e}")
            await send(f"Error: {e}", None)
            return None
