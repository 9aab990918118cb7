"""Local subprocess sandbox for development without a jail container."""

import asyncio
import os
import re
import shlex


class LocalSandbox:
    """Runs commands with ``/bin/sh`` in a working directory on this host."""

    DENY_PATTERNS = [
        r"\brm\s+-[rf]{1,2}\s+/(\s|$)",  # rm -rf /
        r"(?<![-\w])\b(mkfs|diskpart)\b",  # disk operations
        r"\bdd\s+if=",
        r">\s*/dev/sd",
        r"\b(shutdown|reboot|poweroff)\b",
        r":\(\)\s*\{.*\};\s*:",  # fork bomb
    ]

    INTERACTIVE_ERROR = (
        "Error: Command blocked because it may wait for interactive input. "
        "Use a non-interactive form (for example `sudo -n ...` or `apt-get install -y ...`)."
    )

    def __init__(self, working_dir: str | None = None, timeout: int = 120, max_output: int = 100_000):
        self.working_dir = working_dir
        self.timeout = timeout
        self.max_output = max_output

    def describe(self) -> str:
        return f"local shell in {self.working_dir or os.getcwd()}"

    async def execute(self, command: str) -> str:
        guard_error = self._guard(command)
        if guard_error:
            return guard_error

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.working_dir or os.getcwd(),
            )
            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                process.kill()
                return f"Error: Command timed out after {self.timeout} seconds"
        except OSError as e:
            return f"Error executing command: {e}"

        parts = []
        if stdout:
            parts.append(stdout.decode("utf-8", errors="replace"))
        if stderr:
            err = stderr.decode("utf-8", errors="replace")
            if err.strip():
                parts.append(f"STDERR:\n{err}")
        if process.returncode != 0:
            parts.append(f"\nExit code: {process.returncode}")

        result = "\n".join(parts) if parts else "(no output)"
        if len(result) > self.max_output:
            result = result[: self.max_output] + f"\n... (truncated, {len(result) - self.max_output} more chars)"
        return result

    def _guard(self, command: str) -> str | None:
        lower = command.strip().lower()
        for pattern in self.DENY_PATTERNS:
            if re.search(pattern, lower):
                return "Error: Command blocked by safety guard (dangerous pattern detected)"

        if self._sudo_may_prompt(command):
            return (
                "Error: Command blocked. `sudo` without `-n` may prompt for a password. "
                "Use `sudo -n ...`."
            )
        if re.search(r"\b(passwd|su)\b", lower) or re.search(r"\b(gh|docker|npm)\s+login\b", lower):
            return self.INTERACTIVE_ERROR
        if re.search(r"\b(apt|apt-get|yum|dnf)\b", lower) and re.search(r"\binstall\b", lower):
            if not re.search(r"\s(-y|--yes|--assume-yes)\b", lower):
                return self.INTERACTIVE_ERROR
        return None

    @staticmethod
    def _sudo_may_prompt(command: str) -> bool:
        try:
            tokens = shlex.split(command)
        except ValueError:
            lower = command.lower()
            return "sudo" in lower and not re.search(r"\bsudo\s+(-\w*n\w*|--non-interactive)\b", lower)

        for i, tok in enumerate(tokens):
            if tok != "sudo":
                continue
            flags = []
            for t in tokens[i + 1:]:
                if not t.startswith("-") or t == "--":
                    break
                flags.append(t)
            if not any(f == "--non-interactive" or (not f.startswith("--") and "n" in f[1:]) for f in flags):
                return True
        return False
