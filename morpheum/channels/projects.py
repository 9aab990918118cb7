"""Project rooms: private Matrix rooms bound to one GitHub repository."""

import time
from dataclasses import dataclass

from loguru import logger

from morpheum.agent.rooms import ROOM_CONFIG_EVENT, RoomOverride
from morpheum.channels.matrix import MatrixClient
from morpheum.errors import GitHubError, GitUrlParseError, MatrixError
from morpheum.github.client import GitHubClient, RepositoryInfo, RepositoryStats
from morpheum.github.giturl import parse_git_url


@dataclass
class ProjectRoomResult:
    success: bool
    room_id: str = ""
    project_name: str = ""
    repository: str = ""
    repository_url: str = ""
    repository_created: bool = False
    error: str = ""


class ProjectRoomManager:
    """Creates project rooms and reads or updates their configuration."""

    def __init__(self, matrix: MatrixClient, github: GitHubClient | None = None):
        self.matrix = matrix
        self.github = github

    async def create_project_room(
        self,
        git_url: str,
        creator: str,
        new_repository: str | None = None,
    ) -> ProjectRoomResult:
        """Create a room for ``git_url``; with ``new_repository`` create the repo first."""
        created: RepositoryInfo | None = None
        if new_repository:
            if self.github is None:
                return ProjectRoomResult(False, error="GitHub token not configured. Set GITHUB_TOKEN.")
            try:
                created = await self.github.create_repository(
                    new_repository,
                    description="Created via Morpheum Bot for project room",
                )
            except GitHubError as e:
                return ProjectRoomResult(False, error=f"Failed to create repository: {e}")
            git_url = created.full_name

        try:
            info = parse_git_url(git_url)
        except GitUrlParseError as e:
            return ProjectRoomResult(False, error=f"Invalid Git URL format. {e}")

        repository = info.full_name
        config = RoomOverride(repository=repository, created_by=creator)
        options = {
            "name": info.repo,
            "topic": f"GitHub Project: {repository} - Managed by Morpheum Bot",
            "visibility": "private",
            "preset": "private_chat",
            "room_alias_name": f"{info.repo}-{int(time.time() * 1000)}",
            "initial_state": [
                {
                    "type": "m.room.history_visibility",
                    "state_key": "",
                    "content": {"history_visibility": "shared"},
                },
                {"type": ROOM_CONFIG_EVENT, "state_key": "", "content": config.to_state()},
            ],
        }

        try:
            room_id = await self.matrix.create_room(options)
        except MatrixError as e:
            text = str(e).lower()
            if e.errcode == "M_ROOM_IN_USE" or "already exists" in text:
                error = "A room with this project name already exists. Please try again."
            elif e.status_code == 403:
                error = "Insufficient permissions to create a room. Please contact your administrator."
            else:
                error = f"Failed to create project room: {e}"
            return ProjectRoomResult(False, error=error)

        logger.info(f"Created project room {room_id} for {repository}")
        return ProjectRoomResult(
            success=True,
            room_id=room_id,
            project_name=info.repo,
            repository=repository,
            repository_url=created.html_url if created else "",
            repository_created=created is not None,
        )

    async def invite_user(self, room_id: str, user_id: str) -> str | None:
        """Invite ``user_id``; returns an error message or None on success."""
        try:
            await self.matrix.invite(room_id, user_id)
        except MatrixError as e:
            text = str(e).lower()
            if "already in the room" in text or "already joined" in text:
                return "User is already in the room."
            if e.status_code == 404 or "unknown user" in text:
                return "User not found. Please check the user ID."
            return f"Failed to invite user: {e}"
        return None

    async def get_project_config(self, room_id: str) -> RoomOverride | None:
        try:
            raw = await self.matrix.get_state(room_id, ROOM_CONFIG_EVENT)
        except MatrixError as e:
            logger.debug(f"No project config for {room_id}: {e}")
            return None
        return RoomOverride.model_validate(raw) if raw else None

    async def send_welcome_message(self, room_id: str, repository: str) -> None:
        name = repository.split("/")[-1]
        await self.matrix.send_message(
            room_id,
            f"🚀 Welcome to the {name} project room!\n\n"
            "This room is configured for:\n"
            f"📂 Repository: {repository}\n"
            "🤖 AI Provider: GitHub Copilot\n\n"
            "You can now collaborate on this project with AI assistance.\n"
            'Try asking: "Show me the latest issues" or "Help me implement a new feature"',
        )

    async def get_repository_stats(self, git_url: str) -> RepositoryStats:
        if self.github is None:
            raise GitHubError("GitHub token not configured")
        return await self.github.get_repository_stats(git_url)
