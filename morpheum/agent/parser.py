"""Extract structured pieces from a model response."""

import re
from dataclasses import dataclass

_PLAN_RE = re.compile(r"<plan>([\s\S]*?)</plan>", re.IGNORECASE)
_NEXT_STEP_RE = re.compile(r"<next_step>([\s\S]*?)</next_step>", re.IGNORECASE)
_BASH_RE = re.compile(r"```(?:bash|sh|shell)[ \t]*\r?\n([\s\S]*?)\r?\n?```")


@dataclass(frozen=True)
class PlanAndNextStep:
    plan: str | None = None
    next_step: str | None = None


def parse_plan_and_next_step(response: str) -> PlanAndNextStep:
    """Pull the optional <plan> and <next_step> sections out of a response."""
    plan = _PLAN_RE.search(response)
    step = _NEXT_STEP_RE.search(response)
    return PlanAndNextStep(
        plan=(plan.group(1).strip() or None) if plan else None,
        next_step=(step.group(1).strip() or None) if step else None,
    )


def parse_bash_commands(response: str) -> list[str]:
    """All non-empty fenced shell blocks, in order of appearance."""
    commands = []
    for m in _BASH_RE.finditer(response):
        command = m.group(1).strip()
        if command:
            commands.append(command)
    return commands
