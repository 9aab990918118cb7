"""Client for the jail container's line-oriented shell socket."""

import asyncio
import uuid

from loguru import logger

_READ_LIMIT = 16 * 1024 * 1024


class JailClient:
    """Sends commands to a shell listening on a TCP port inside the jail.

    Each command is followed by an ``echo`` of a one-off sentinel; everything
    read before the sentinel is the command's output.
    """

    def __init__(self, host: str = "localhost", port: int = 10001, timeout: float = 120.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    def describe(self) -> str:
        return f"jail at {self.host}:{self.port}"

    async def execute(self, command: str) -> str:
        sentinel = f"__MORPHEUM_DONE_{uuid.uuid4().hex}__"
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=_READ_LIMIT), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Cannot reach {self.describe()}: {e!r}")
            return f"Error: could not connect to sandbox at {self.host}:{self.port}: {e!r}"

        try:
            # Split the sentinel so a shell that echoes input cannot match early.
            marker = f"'{sentinel[:8]}''{sentinel[8:]}'"
            writer.write(f"{command}\necho {marker}\n".encode())
            await writer.drain()
            raw = await asyncio.wait_for(reader.readuntil(sentinel.encode()), timeout=self.timeout)
        except asyncio.TimeoutError:
            return f"Error: Command timed out after {self.timeout:g} seconds"
        except asyncio.IncompleteReadError as e:
            # Shell exited (e.g. `exit` in the command) before the sentinel.
            raw = e.partial
        except asyncio.LimitOverrunError:
            return f"Error: command output exceeded {_READ_LIMIT} bytes"
        except OSError as e:
            logger.warning(f"Sandbox connection error: {e!r}")
            return f"Error: sandbox connection failed: {e!r}"
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

        output = raw.decode("utf-8", errors="replace")
        if output.endswith(sentinel):
            output = output[: -len(sentinel)]
        return output.strip("\n") or "(no output)"
