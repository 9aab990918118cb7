"""Agent core: task engine, runners and room resolution."""

from morpheum.agent.engine import TaskEngine
from morpheum.agent.loop import IterativeRunner
from morpheum.agent.rooms import RoomConfigResolver, RoomOverride, TaskContext
from morpheum.agent.session import TicketRunner

__all__ = [
    "IterativeRunner",
    "RoomConfigResolver",
    "RoomOverride",
    "TaskContext",
    "TaskEngine",
    "TicketRunner",
]
