"""GitHub Copilot coding agent client.

The Copilot agent works out of band: a task becomes an issue assigned to the
agent, the agent opens a pull request, and this client polls GitHub until the
pull request is ready (or the issue goes away) and summarizes the result.
"""

import asyncio
import html
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from morpheum.errors import ConfigurationError, GitHubError, ProviderError
from morpheum.github.client import GitHubClient
from morpheum.providers.base import (
    ChunkCallback,
    DualRendering,
    ExecutionMode,
    LLMClient,
    PlainText,
    ProviderIdentity,
)

_ACTORS_QUERY = """
query FindCopilot($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    id
    suggestedActors(capabilities: [CAN_BE_ASSIGNED], first: 100) {
      nodes {
        login
        __typename
        ... on Bot { id }
        ... on User { id }
      }
    }
  }
}
"""

_CREATE_ISSUE_MUTATION = """
mutation CreateIssue($repositoryId: ID!, $title: String!, $body: String!, $assigneeIds: [ID!]) {
  createIssue(input: {repositoryId: $repositoryId, title: $title, body: $body, assigneeIds: $assigneeIds}) {
    issue {
      id
      number
      url
    }
  }
}
"""

COPILOT_LOGIN = "copilot-swe-agent"

# Session states in the order they are normally reached
PENDING = "pending"
WORKING = "working"
COMPLETED = "completed"
CLOSED = "closed"
TIMED_OUT = "timed_out"


@dataclass
class CopilotSession:
    issue_number: int
    title: str
    issue_url: str
    status: str = PENDING
    pr_number: int | None = None
    pr_url: str = ""

    def describe(self) -> str:
        line = f"[#{self.issue_number}]({self.issue_url}) {self.title}: **{self.status}**"
        if self.pr_number:
            line += f" (PR [#{self.pr_number}]({self.pr_url}))"
        return line


def _is_copilot(login: str | None) -> bool:
    return "copilot" in (login or "").lower()


def _issue_title(prompt: str) -> str:
    first = prompt.strip().splitlines()[0] if prompt.strip() else "Task"
    return first if len(first) <= 80 else first[:77] + "..."


def progress_frame(session: CopilotSession) -> DualRendering:
    """Text and iframe renderings of the live progress link."""
    url = session.issue_url
    text = (
        "📊 **GitHub Copilot Progress Tracking**\n\n"
        f"🔗 **Issue:** [#{session.issue_number}]({url})\n"
        "Copilot is working on this issue. Status updates will follow here.\n"
    )
    safe_url = html.escape(url, quote=True)
    markup = (
        "<div>"
        "<h4>🤖 Live Progress Tracking</h4>"
        f'<iframe src="{safe_url}" width="100%" height="400" '
        'sandbox="allow-scripts allow-same-origin allow-popups"></iframe>'
        f"<p>📊 Issue Tracking: <a href=\"{safe_url}\">Open Issue #{session.issue_number} ↗</a></p>"
        "</div>"
    )
    return DualRendering(text=text, html=markup)


class CopilotClient(LLMClient):
    """Delegates a task to the Copilot coding agent and tracks the session."""

    mode = ExecutionMode.TICKET

    def __init__(
        self,
        token: str,
        repository: str,
        base_url: str = "https://api.github.com",
        poll_interval: float = 10.0,
        session_timeout: float = 3600.0,
        github: GitHubClient | None = None,
    ):
        parts = repository.split("/")
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError('Repository must be in format "owner/repo"')
        super().__init__(ProviderIdentity("copilot", repository, base_url, token or None))
        self.owner, self.repo = parts
        self.repository = repository
        self.poll_interval = poll_interval
        self.session_timeout = session_timeout
        self.github = github or GitHubClient(token, base_url=base_url)
        self._sessions: dict[int, CopilotSession] = {}

    async def send_streaming(self, prompt: str, on_chunk: ChunkCallback) -> str:
        started = time.monotonic()
        try:
            return await self._run_session(prompt, on_chunk)
        except GitHubError as e:
            logger.error(f"Copilot session for {self.repository} failed: {e}")
            raise ProviderError(f"Copilot session failed: {e}") from e
        finally:
            self._record(time.monotonic() - started)

    async def _run_session(self, prompt: str, on_chunk: ChunkCallback) -> str:
        title = _issue_title(prompt)
        await on_chunk(PlainText(f'🔄 Creating GitHub issue for: "{title}"\n'))

        session = await self._create_issue(title, prompt)
        self._sessions[session.issue_number] = session
        link = f"[#{session.issue_number}]({session.issue_url})"
        await on_chunk(PlainText(f"✅ Issue {link} created\n"))
        await on_chunk(PlainText(f"🚀 Starting GitHub Copilot session for {link}\n"))
        await on_chunk(progress_frame(session))
        await on_chunk(PlainText(f"⏳ Copilot session started. Track progress on issue {link}\n"))

        deadline = time.monotonic() + self.session_timeout
        while session.status not in (COMPLETED, CLOSED):
            if time.monotonic() >= deadline:
                session.status = TIMED_OUT
                break
            await asyncio.sleep(self.poll_interval)
            previous = session.status
            await self._refresh(session)
            if session.status != previous:
                logger.info(f"Copilot session #{session.issue_number}: {previous} -> {session.status}")
                await on_chunk(PlainText(f"🔄 Copilot session {link} is now **{session.status}**\n"))

        return self._summary(session)

    async def _create_issue(self, title: str, body: str) -> CopilotSession:
        data = await self.github.graphql(_ACTORS_QUERY, {"owner": self.owner, "name": self.repo})
        repo = data.get("repository") or {}
        actors = (repo.get("suggestedActors") or {}).get("nodes") or []
        copilot = next((a for a in actors if _is_copilot(a.get("login"))), None)
        if not repo.get("id") or copilot is None:
            raise ProviderError(
                f"The Copilot coding agent is not enabled for {self.repository}"
            )

        created = await self.github.graphql(
            _CREATE_ISSUE_MUTATION,
            {
                "repositoryId": repo["id"],
                "title": title,
                "body": body,
                "assigneeIds": [copilot["id"]],
            },
        )
        issue = created["createIssue"]["issue"]
        number = int(issue["number"])
        url = issue.get("url") or f"https://github.com/{self.repository}/issues/{number}"
        return CopilotSession(issue_number=number, title=title, issue_url=url)

    async def _refresh(self, session: CopilotSession) -> None:
        """Update session status from the issue and its linked pull request."""
        base = f"/repos/{self.owner}/{self.repo}"
        issue = await self.github.request("GET", f"{base}/issues/{session.issue_number}")
        if session.pr_number is None:
            session.pr_number, session.pr_url = await self._linked_pull(session.issue_number)

        if session.pr_number is not None:
            pr = await self.github.request("GET", f"{base}/pulls/{session.pr_number}")
            session.pr_url = pr.get("html_url") or session.pr_url
            if pr.get("merged"):
                session.status = COMPLETED
            elif pr.get("state") == "closed":
                session.status = CLOSED
            elif not pr.get("draft"):
                session.status = COMPLETED
            else:
                session.status = WORKING
        elif (issue or {}).get("state") == "closed":
            session.status = CLOSED

    async def _linked_pull(self, issue_number: int) -> tuple[int | None, str]:
        events = await self.github.request(
            "GET",
            f"/repos/{self.owner}/{self.repo}/issues/{issue_number}/timeline",
            params={"per_page": 100},
        )
        for event in events or []:
            if event.get("event") != "cross-referenced":
                continue
            source = (event.get("source") or {}).get("issue") or {}
            if source.get("pull_request") is not None and source.get("number"):
                number = int(source["number"])
                url = source.get("html_url") or f"https://github.com/{self.repository}/pull/{number}"
                return number, url
        return None, ""

    def _summary(self, session: CopilotSession) -> str:
        link = f"[#{session.issue_number}]({session.issue_url})"
        if session.status == COMPLETED:
            lines = [f"✅ GitHub Copilot session completed for {link}."]
        elif session.status == CLOSED:
            lines = [f"🛑 GitHub Copilot session for {link} was closed before completion."]
        else:
            minutes = int(self.session_timeout // 60)
            lines = [
                f"⌛ Stopped tracking {link} after {minutes} minutes. "
                "Copilot may still be working on it."
            ]
        if session.pr_number:
            lines.append(f"Pull request: [#{session.pr_number}]({session.pr_url})")
        return "\n\n".join(lines)

    async def get_session_status(self, issue_number: int) -> CopilotSession:
        session = self._sessions.get(issue_number)
        if session is None:
            issue = await self.github.request(
                "GET", f"/repos/{self.owner}/{self.repo}/issues/{issue_number}"
            )
            session = CopilotSession(
                issue_number=issue_number,
                title=issue.get("title", ""),
                issue_url=issue.get("html_url", ""),
            )
        await self._refresh(session)
        return session

    async def get_active_sessions(self) -> list[CopilotSession]:
        """Open issues in the repository that are assigned to Copilot."""
        issues = await self.github.request(
            "GET",
            f"/repos/{self.owner}/{self.repo}/issues",
            params={"state": "open", "per_page": 100},
        )
        sessions: list[CopilotSession] = []
        for issue in issues or []:
            if issue.get("pull_request") is not None:
                continue
            if not any(_is_copilot(a.get("login")) for a in issue.get("assignees") or []):
                continue
            number = int(issue["number"])
            tracked = self._sessions.get(number)
            sessions.append(
                tracked
                or CopilotSession(
                    issue_number=number,
                    title=issue.get("title", ""),
                    issue_url=issue.get("html_url", ""),
                    status=WORKING,
                )
            )
        return sessions

    async def cancel_session(self, issue_number: int) -> bool:
        """Close the session's issue. Returns False if GitHub refused."""
        base = f"/repos/{self.owner}/{self.repo}/issues/{issue_number}"
        try:
            await self.github.request(
                "POST", f"{base}/comments", json={"body": "Session cancelled from chat."}
            )
            await self.github.request("PATCH", base, json={"state": "closed"})
        except GitHubError as e:
            logger.warning(f"Failed to cancel Copilot session #{issue_number}: {e}")
            return False
        session = self._sessions.get(issue_number)
        if session:
            session.status = CLOSED
        return True

    async def close(self) -> None:
        await self.github.close()
