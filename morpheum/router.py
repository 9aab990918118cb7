"""Command routing for inbound room messages.

``!``-prefixed messages are commands; anything else is a task for the
engine. Every message takes exactly one path.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

from loguru import logger

from morpheum.agent.engine import TaskEngine
from morpheum.agent.formatting import Sender, markdown_to_html, send_markdown
from morpheum.channels.projects import ProjectRoomManager
from morpheum.config.schema import PROVIDER_NAMES, Config
from morpheum.errors import ConfigurationError, GitHubError, MorpheumError
from morpheum.providers.base import ProgressChunk
from morpheum.providers.copilot_provider import CopilotClient
from morpheum.sandbox.jail import JailClient

ProcessRunner = Callable[[list[str], str], Awaitable[tuple[int, str, str]]]

HELP_TEXT = """Hello! I am the Morpheum Bot.

Available commands:
- `!help` - Show this help message
- `!devlog` - Show development log
- `!llm status` - Show current LLM provider and configuration
- `!llm switch openai [model] [baseUrl]` - Switch to OpenAI (requires OPENAI_API_KEY)
- `!llm switch ollama [model] [baseUrl]` - Switch to Ollama
- `!llm switch copilot <repository>` - Switch to GitHub Copilot (requires GITHUB_TOKEN)
- `!openai <prompt>` - Send a direct prompt to OpenAI
- `!ollama <prompt>` - Send a direct prompt to Ollama
- `!copilot status [issue]` - Check Copilot session status
- `!copilot list` - List active Copilot sessions
- `!copilot cancel <issue>` - Cancel a Copilot session
- `!project create <git-url>` - Create a project room for a GitHub repository
- `!project create --new <repo-name>` - Create a GitHub repository and project room
- `!project status <git-url>` - Show repository statistics
- `!create [port]` - Start a new sandbox container and use it

For regular tasks, just type your request without a command prefix."""

PROJECT_HELP = """🏗️  **Project Room Management**

**Create a project room:**
`!project create <git-url>`
`!project create --new <repo-name>`

**Get repository statistics:**
`!project status <git-url>`

**Supported URL formats:**
- SSH: git@github.com:user/repo
- HTTPS: https://github.com/user/repo
- Short: user/repo

**Examples:**
- `!project create git@github.com:facebook/react`
- `!project create microsoft/vscode`
- `!project create --new my-awesome-project`
- `!project status facebook/react`"""


async def run_process(args: list[str], cwd: str) -> tuple[int, str, str]:
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode or 0,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


def _date(value: str, with_time: bool = False) -> str:
    if not value:
        return "Never"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%B %d, %Y %H:%M" if with_time else "%B %d, %Y")


class CommandRouter:
    """Dispatches a message body to a command handler or to the task engine."""

    def __init__(
        self,
        engine: TaskEngine,
        projects: ProjectRoomManager | None = None,
        debug: bool = False,
        process_runner: ProcessRunner = run_process,
    ):
        self.engine = engine
        self.projects = projects
        self.debug = debug
        self.process_runner = process_runner

    @property
    def config(self) -> Config:
        return self.engine.config

    async def route(self, body: str, sender: str, send: Sender, room_id: str = "") -> Any:
        if self.debug:
            logger.debug(f"Received command from {sender} in room {room_id or 'unknown'}: {body!r}")

        body = body.strip()
        if body.startswith("!create"):
            parts = body.split()
            return await self.handle_create(parts[1] if len(parts) > 1 else "10001", send)
        if body.startswith("!project"):
            return await self.handle_project(body, send, room_id, sender)
        if body.startswith("!"):
            return await self.handle_info(body, send, room_id)
        return await self.engine.handle_task(body, send, room_id or None)

    # ── !create ──

    async def handle_create(self, port: str, send: Sender) -> str | None:
        if not port.isdigit():
            await send("Usage: !create [port]", None)
            return None
        await send("Creating a new environment...", None)
        name = f"morpheum-sandbox-{int(time.time() * 1000)}"
        args = ["nix", "develop", "-c", "./run.sh", name, port, str(int(port) + 1)]
        try:
            code, stdout, stderr = await self.process_runner(args, self.config.sandbox.jail_dir)
        except OSError as e:
            await send(f"Error creating environment: {e}", None)
            return None
        if code != 0:
            await send(f"Error creating environment (exit code {code}):\n{stderr or stdout}", None)
            return None

        await send(f"Successfully created container: {name}\nStdout:\n{stdout}\nStderr:\n{stderr}", None)
        self.engine.set_sandbox(
            JailClient(self.config.sandbox.host, int(port), float(self.config.sandbox.timeout))
        )
        await send(f"Agent reset to talk to the new container on port {port}", None)
        return name

    # ── info commands ──

    async def handle_info(self, body: str, send: Sender, room_id: str) -> None:
        command = body.split(maxsplit=1)[0]
        if command == "!help":
            await send_markdown(HELP_TEXT, send)
        elif command == "!devlog":
            await self.handle_devlog(send)
        elif command == "!llm":
            await self.handle_llm(body, send, room_id)
        elif command in ("!openai", "!ollama"):
            await self.handle_direct(command[1:], body[len(command):].strip(), send)
        elif command == "!copilot":
            await self.handle_copilot(body, send, room_id)
        else:
            await send(f"Unknown command {command}. Type !help for a list of commands.", None)

    async def handle_devlog(self, send: Sender) -> None:
        path = self.config.devlog_path
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            await send(f"Could not read {path}: {e.strerror or e}", None)
            return
        await send(content, markdown_to_html(content))

    async def handle_llm(self, body: str, send: Sender, room_id: str) -> None:
        parts = body.split()
        sub = parts[1] if len(parts) > 1 else ""
        if sub == "status":
            await send_markdown(await self._llm_status(room_id), send)
        elif sub == "switch":
            await self._llm_switch(parts[2:], send)
        else:
            await send("Usage: !llm <status|switch>", None)

    async def _llm_status(self, room_id: str) -> str:
        override = await self.engine.rooms.resolve(room_id) if room_id else None
        identity = self.engine.identity
        if override:
            status = f"Current Provider: {override.provider} (from project room configuration)"
            status += (
                "\n\n**🏗️ Project Room Configuration:**\n"
                "This room has project-specific settings that override global config for tasks:\n"
                f"- Repository: {override.repository}\n"
                f"- LLM Provider: {override.provider}\n"
                f"- Created by: {override.created_by}\n"
                f"- Created at: {override.created_at}\n\n"
                f"*Note: Tasks in this room will automatically use Copilot with repository "
                f"'{override.repository}'*"
            )
        else:
            status = f"Current Provider: {identity.kind} (from global configuration)"

        p = self.config.providers

        def configured(value: str) -> str:
            return "configured" if value else "not configured"

        status += (
            "\n\n**Available Providers:**\n"
            f"- OpenAI: model={p.openai.model}, baseUrl={p.openai.base_url}, "
            f"apiKey={configured(p.openai.api_key)}\n"
            f"- Ollama: model={p.ollama.model}, baseUrl={p.ollama.base_url}\n"
            f"- Copilot: repository={p.copilot.repository or 'not configured'}, "
            f"baseUrl={p.copilot.base_url}, apiKey={configured(p.copilot.api_key)}"
        )
        return status

    async def _llm_switch(self, args: list[str], send: Sender) -> None:
        provider = args[0].lower() if args else ""
        if provider not in PROVIDER_NAMES:
            await send(
                "Usage: !llm switch <openai|ollama|copilot> [model] [baseUrl] "
                "or !llm switch copilot <repository>",
                None,
            )
            return
        target = args[1] if len(args) > 1 else None
        base_url = args[2] if len(args) > 2 else None
        if provider == "copilot" and not (target or self.config.providers.copilot.repository):
            await send("Error: Repository is required for Copilot. Use: !llm switch copilot <owner/repo>", None)
            return

        try:
            identity = self.engine.switch_provider(provider, target, base_url)
        except ConfigurationError as e:
            await send(f"Error switching LLM provider: {e}", None)
            return

        if provider == "copilot":
            await send(f"Switched to copilot (repository: {identity.target}, baseUrl: {identity.base_url})", None)
        else:
            await send(f"Switched to {provider} (model: {identity.target}, baseUrl: {identity.base_url})", None)

    async def handle_direct(self, provider: str, prompt: str, send: Sender) -> None:
        label = "OpenAI" if provider == "openai" else "Ollama"
        if not prompt:
            await send(f"Usage: !{provider} <prompt>", None)
            return
        try:
            client = self.engine.client_factory(provider, self.config)
        except ConfigurationError as e:
            await send(f"Error: {e}", None)
            return

        async def _discard(_chunk: ProgressChunk) -> None:
            return None

        await send(f"🤖 {label} is thinking...", None)
        try:
            response = await client.send_streaming(prompt, _discard)
        except MorpheumError as e:
            await send(f"Error calling {label}: {e}", None)
            return
        finally:
            await client.close()
        await send_markdown(response, send)
        await send(f"✅ {label} completed.", None)

    async def handle_copilot(self, body: str, send: Sender, room_id: str) -> None:
        parts = body.split()
        sub = parts[1] if len(parts) > 1 else ""
        usage = "Usage: !copilot <status|list|cancel> [issue-number]"
        if sub not in ("status", "list", "cancel"):
            await send(usage, None)
            return

        async with self.engine.rooms.scope(room_id or None) as ctx:
            client = ctx.client
            if not isinstance(client, CopilotClient):
                await send(
                    "Error: Not currently using Copilot provider. "
                    "Use `!llm switch copilot <repository>` first.",
                    None,
                )
                return
            try:
                await self._copilot_command(client, sub, parts[2:], send)
            except MorpheumError as e:
                await send(f"Error executing Copilot command: {e}", None)

    async def _copilot_command(self, client: CopilotClient, sub: str, args: list[str], send: Sender) -> None:
        issue = args[0].lstrip("#") if args else ""
        if sub == "status" and not issue:
            p = self.config.providers.copilot
            await send(
                "📊 Copilot Integration Status:\n"
                f"- Repository: {client.repository}\n"
                f"- Base URL: {p.base_url}\n"
                f"- Token: {'configured' if p.api_key else 'not configured'}",
                None,
            )
        elif sub == "status":
            if not issue.isdigit():
                await send("Usage: !copilot status [issue-number]", None)
                return
            session = await client.get_session_status(int(issue))
            await send_markdown(f"📊 {session.describe()}", send)
        elif sub == "list":
            sessions = await client.get_active_sessions()
            if not sessions:
                await send("No active Copilot sessions found.", None)
            else:
                lines = "\n".join(f"- {s.describe()}" for s in sessions)
                await send_markdown(f"Active sessions:\n{lines}", send)
        else:
            if not issue.isdigit():
                await send("Usage: !copilot cancel <issue-number>", None)
                return
            await send(f"❌ Cancelling session: #{issue}", None)
            if await client.cancel_session(int(issue)):
                await send(f"✅ Session #{issue} cancelled successfully.", None)
            else:
                await send(f"❌ Failed to cancel session #{issue}.", None)

    # ── !project ──

    async def handle_project(self, body: str, send: Sender, room_id: str, sender: str) -> None:
        if self.projects is None:
            await send("❌ Project room functionality is not available. Matrix client not configured.", None)
            return
        parts = body.split()
        sub = parts[1] if len(parts) > 1 else ""
        if sub == "create":
            await self._project_create(parts[2:], send, sender)
        elif sub == "status":
            await self._project_status(parts[2:], send)
        elif sub == "help":
            await send_markdown(PROJECT_HELP, send)
        else:
            await send("Usage: !project <create|status|help>\nUse `!project help` for detailed information.", None)

    async def _project_create(self, args: list[str], send: Sender, sender: str) -> None:
        is_new = "--new" in args
        rest = [a for a in args if a != "--new"]
        if not rest:
            await send(
                "❌ Repository name or Git URL is required.\n\nUsage:\n"
                "- `!project create <git-url>` (for existing repositories)\n"
                "- `!project create --new <repo-name>` (to create new repository)",
                None,
            )
            return
        target = rest[0]

        if is_new:
            if not all(c.isalnum() or c in "._-" for c in target):
                await send(
                    "❌ Invalid repository name. Repository names can only contain alphanumeric "
                    "characters, dots, hyphens, and underscores.",
                    None,
                )
                return
            await send("🔨 Creating new GitHub repository and project room...", None)
            result = await self.projects.create_project_room("", sender, new_repository=target)
        else:
            await send("🔨 Creating project room...", None)
            result = await self.projects.create_project_room(target, sender)

        if not result.success:
            await send(f"❌ {result.error}", None)
            return

        invite_error = await self.projects.invite_user(result.room_id, sender)
        if invite_error:
            await send(
                f"✅ Project room '{result.project_name}' created, but failed to invite you: "
                f"{invite_error}\nPlease join manually: {result.room_id}",
                None,
            )
            return

        config = await self.projects.get_project_config(result.room_id)
        if config:
            self.engine.rooms.remember(result.room_id, config)

        if result.repository_created:
            await send_markdown(
                f"✅ **GitHub repository and project room '{result.project_name}' created!**\n"
                f"🔗 Repository: {result.repository_url}\n"
                "👥 You've been invited to join the project room.",
                send,
            )
        else:
            await send(f"✅ Project room '{result.project_name}' created! You've been invited to join.", None)

        await self.projects.send_welcome_message(result.room_id, result.repository)

    async def _project_status(self, args: list[str], send: Sender) -> None:
        if not args:
            await send("❌ Git URL is required. Usage: !project status <git-url>", None)
            return
        git_url = args[0]
        await send("📊 Fetching repository statistics...", None)
        try:
            stats = await self.projects.get_repository_stats(git_url)
        except GitHubError as e:
            if e.status_code == 404:
                await send(
                    f"❌ Repository not found: {git_url}\n"
                    "Please check the URL and ensure the repository exists and is accessible.",
                    None,
                )
            elif e.status_code == 403 and "rate limit" in str(e).lower():
                await send("❌ GitHub API rate limit exceeded. Please try again later.", None)
            elif "token not configured" in str(e):
                await send("❌ GitHub token not configured. Please set GITHUB_TOKEN.", None)
            else:
                await send(f"❌ Error fetching repository statistics: {e}", None)
            return
        except ValueError as e:
            await send(f"❌ {e}", None)
            return

        repo = stats.repository
        top = stats.contributors[:5]
        contributors = (
            "\n".join(f"{i}. **{login}** ({count} commits)" for i, (login, count) in enumerate(top, 1))
            or "No contributors found"
        )
        if len(stats.contributors) > 5:
            contributors += f"\n*...and {len(stats.contributors) - 5} more contributors*"

        message = (
            f"📊 **Repository Statistics for {repo.full_name}**\n\n"
            "**📈 Activity:**\n"
            f"- **Commits:** {stats.commit_count:,}\n"
            f"- **Last Commit:** {_date(stats.last_commit.date, True) if stats.last_commit else 'Never'}\n"
            f"- **Created:** {_date(repo.created_at)}\n"
            f"- **Last Updated:** {_date(repo.updated_at)}\n\n"
            f"**👥 Top Contributors:**\n{contributors}\n\n"
            "**📋 Repository Info:**\n"
            f"- **Description:** {repo.description or '*No description provided*'}\n"
            f"- **License:** {repo.license or '*No license specified*'}\n"
            f"- **Default Branch:** {repo.default_branch}\n"
            f"- **Visibility:** {'Private' if repo.private else 'Public'}\n\n"
            "**🔗 Links:**\n"
            f"- **Repository:** https://github.com/{repo.full_name}\n"
            f"- **Clone URL:** {repo.clone_url}"
        )
        if stats.last_commit:
            commit = stats.last_commit
            url = f"https://github.com/{repo.full_name}/commit/{commit.sha}"
            message += (
                "\n\n**📝 Last Commit:**\n"
                f"- **Message:** [{commit.message.splitlines()[0] if commit.message else ''}]({url})\n"
                f"- **Author:** {commit.author}\n"
                f"- **SHA:** [`{commit.sha[:7]}`]({url})"
            )
        await send_markdown(message, send)
