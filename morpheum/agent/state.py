"""Per-task conversation state."""

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    content: str


@dataclass
class Conversation:
    """Ordered turns for one task invocation. Never shared or persisted."""

    turns: list[ConversationTurn] = field(default_factory=list)

    def append(self, role: Role, content: str) -> ConversationTurn:
        turn = ConversationTurn(role, content)
        self.turns.append(turn)
        return turn

    def to_prompt(self) -> str:
        """Serialize as ``role: content`` blocks separated by blank lines."""
        return "\n\n".join(f"{t.role.value}: {t.content}" for t in self.turns)

    def by_role(self, role: Role) -> list[ConversationTurn]:
        return [t for t in self.turns if t.role == role]

    def __len__(self) -> int:
        return len(self.turns)


class StopReason(str, Enum):
    NEXT_STEP_COMPLETE = "next_step_complete"
    OUTPUT_COMPLETE = "output_complete"
    NO_COMMAND = "no_command"
    EXHAUSTED = "exhausted"
    SESSION_RESOLVED = "session_resolved"


@dataclass
class TaskOutcome:
    conversation: Conversation
    reason: StopReason
    iterations: int = 0
    commands_run: int = 0
