"""Room-scoped provider configuration.

A project room carries a state event naming the repository its tasks should
target. Tasks in such a room run against a Copilot client for that
repository; every other task uses the engine's global provider.

Provider context is handed to each task as an immutable ``TaskContext``
rather than by swapping engine fields, so overlapping tasks in different
rooms cannot see each other's override.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from morpheum.config.schema import Config
from morpheum.errors import ConfigurationError
from morpheum.providers.base import LLMClient, ProviderIdentity
from morpheum.providers.factory import create_client
from morpheum.sandbox.base import Sandbox

ROOM_CONFIG_EVENT = "dev.morpheum.project_config"

SOURCE_ROOM = "project room configuration"
SOURCE_GLOBAL = "global configuration"


class RoomStateStore(Protocol):
    async def get(self, room_id: str, key: str) -> dict | None:
        ...

    async def set(self, room_id: str, key: str, config: dict) -> None:
        ...


class RoomOverride(BaseModel):
    """Project configuration stored in a room's state."""

    model_config = ConfigDict(populate_by_name=True)

    repository: str
    provider: str = Field(default="copilot", alias="llmProvider")
    created_by: str = ""
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    version: str = "1.0"

    def to_state(self) -> dict:
        return self.model_dump(by_alias=True)


@dataclass
class ProviderState:
    """The engine-wide active provider. Only `!llm switch` and friends change it."""

    identity: ProviderIdentity
    client: LLMClient
    sandbox: Sandbox


@dataclass(frozen=True)
class TaskContext:
    """Everything a single task needs to talk to its provider."""

    identity: ProviderIdentity
    client: LLMClient
    sandbox: Sandbox
    source: str = SOURCE_GLOBAL

    @classmethod
    def from_state(cls, state: ProviderState) -> "TaskContext":
        return cls(identity=state.identity, client=state.client, sandbox=state.sandbox)


@dataclass(frozen=True)
class SavedConfiguration:
    """Global provider snapshot taken before an override, plus the override's context."""

    identity: ProviderIdentity
    client: LLMClient
    context: TaskContext


ClientFactory = Callable[..., LLMClient]


class RoomConfigResolver:
    """Looks up room overrides and builds per-task provider contexts."""

    def __init__(
        self,
        store: RoomStateStore | None,
        state: ProviderState,
        config: Config,
        client_factory: ClientFactory = create_client,
    ):
        self.store = store
        self.state = state
        self.config = config
        self.client_factory = client_factory
        # Positive results only. A room without config is asked again next
        # time, so a project configured later is picked up.
        self._cache: dict[str, RoomOverride] = {}

    def remember(self, room_id: str, override: RoomOverride) -> None:
        self._cache[room_id] = override

    async def resolve(self, room_id: str) -> RoomOverride | None:
        if room_id in self._cache:
            return self._cache[room_id]
        if self.store is None:
            return None

        try:
            raw = await self.store.get(room_id, ROOM_CONFIG_EVENT)
        except Exception as e:
            logger.warning(f"Could not read room config for {room_id}: {e}")
            return None
        if not raw:
            return None

        try:
            override = RoomOverride.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed room config in {room_id}: {e}")
            return None

        logger.info(f"Room {room_id} is a project room for {override.repository}")
        self._cache[room_id] = override
        return override

    async def apply_override(self, override: RoomOverride) -> SavedConfiguration | None:
        """Build the override's context, or None if it cannot be honored."""
        if override.provider != "copilot":
            logger.warning(f"Unsupported room provider '{override.provider}', using global configuration")
            return None
        if not self.config.providers.copilot.api_key:
            logger.warning(
                f"Room override for {override.repository} needs a GitHub token; "
                "using global configuration"
            )
            return None

        try:
            client = self.client_factory("copilot", self.config, target=override.repository)
        except ConfigurationError as e:
            logger.warning(f"Cannot apply room override for {override.repository}: {e}")
            return None

        saved = SavedConfiguration(
            identity=self.state.identity,
            client=self.state.client,
            context=TaskContext(
                identity=client.identity,
                client=client,
                sandbox=self.state.sandbox,
                source=SOURCE_ROOM,
            ),
        )
        logger.debug(f"Applied room override: {client.identity.describe()}")
        return saved

    async def restore(self, saved: SavedConfiguration) -> None:
        """Release the override's client. The global state was never touched."""
        client = saved.context.client
        if client is not saved.client:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing override client: {e}")
        if self.state.client is not saved.client:
            # Someone switched providers while the task ran; keep their choice.
            logger.debug("Global provider changed during task; leaving it in place")

    @asynccontextmanager
    async def scope(self, room_id: str | None) -> AsyncIterator[TaskContext]:
        override = await self.resolve(room_id) if room_id else None
        saved = await self.apply_override(override) if override else None
        try:
            yield saved.context if saved else TaskContext.from_state(self.state)
        finally:
            if saved is not None:
                await self.restore(saved)
