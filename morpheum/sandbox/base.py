"""Sandbox contract."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Sandbox(Protocol):
    """Runs one shell command and returns its combined output.

    Command failures, timeouts and connection problems come back as output
    text; ``execute`` does not raise for them.
    """

    async def execute(self, command: str) -> str:
        ...

    def describe(self) -> str:
        ...
