from __future__ import annotations

import json

import httpx
import pytest

from morpheum.errors import ConfigurationError, ProviderError
from morpheum.github.client import GitHubClient
from morpheum.providers.base import DualRendering, ExecutionMode, PlainText
from morpheum.providers.copilot_provider import CopilotClient

ISSUE_URL = "https://github.com/acme/widgets/issues/42"
PR_URL = "https://github.com/acme/widgets/pull/43"


class _FakeGitHub:
    """Routes httpx requests to canned GitHub responses."""

    def __init__(
        self,
        actors: list[dict] | None = None,
        issue_state: str = "open",
        pull: dict | None = None,
    ) -> None:
        self.actors = actors if actors is not None else [{"login": "copilot-swe-agent", "id": "BOT_1"}]
        self.issue_state = issue_state
        self.pull = pull
        self.requests: list[tuple[str, str]] = []
        self.created_with: dict | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if path == "/graphql":
            body = json.loads(request.content)
            if "createIssue" in body["query"]:
                self.created_with = body["variables"]
                return httpx.Response(
                    200,
                    json={"data": {"createIssue": {"issue": {"id": "I_1", "number": 42, "url": ISSUE_URL}}}},
                )
            return httpx.Response(
                200,
                json={"data": {"repository": {"id": "R_1", "suggestedActors": {"nodes": self.actors}}}},
            )
        if path == "/repos/acme/widgets/issues/42/timeline":
            events = []
            if self.pull is not None:
                events.append(
                    {
                        "event": "cross-referenced",
                        "source": {"issue": {"number": 43, "pull_request": {}, "html_url": PR_URL}},
                    }
                )
            return httpx.Response(200, json=events)
        if path == "/repos/acme/widgets/issues/42":
            if request.method == "PATCH":
                return httpx.Response(403, json={"message": "Forbidden"})
            return httpx.Response(200, json={"state": self.issue_state, "title": "t", "html_url": ISSUE_URL})
        if path == "/repos/acme/widgets/issues/42/comments":
            return httpx.Response(201, json={"id": 1})
        if path == "/repos/acme/widgets/pulls/43":
            return httpx.Response(200, json={"html_url": PR_URL, **(self.pull or {})})
        if path == "/repos/acme/widgets/issues":
            return httpx.Response(
                200,
                json=[
                    {"number": 42, "title": "a", "html_url": ISSUE_URL, "assignees": [{"login": "Copilot"}]},
                    {"number": 7, "title": "b", "html_url": "", "assignees": [{"login": "octocat"}]},
                    {"number": 43, "title": "pr", "pull_request": {}, "assignees": [{"login": "Copilot"}]},
                ],
            )
        return httpx.Response(404, json={"message": "Not Found"})


def _client(fake: _FakeGitHub, session_timeout: float = 60.0) -> CopilotClient:
    github = GitHubClient("ghp_test", transport=httpx.MockTransport(fake))
    return CopilotClient(
        token="ghp_test",
        repository="acme/widgets",
        poll_interval=0,
        session_timeout=session_timeout,
        github=github,
    )


class _Chunks:
    def __init__(self) -> None:
        self.items: list = []

    async def __call__(self, chunk) -> None:
        self.items.append(chunk)


def test_is_ticket_mode() -> None:
    assert CopilotClient.mode is ExecutionMode.TICKET


def test_repository_must_be_owner_slash_repo() -> None:
    with pytest.raises(ConfigurationError, match="owner/repo"):
        CopilotClient(token="t", repository="widgets")


@pytest.mark.asyncio
async def test_session_reaches_ready_pull_request() -> None:
    fake = _FakeGitHub(pull={"state": "open", "draft": False, "merged": False})
    client = _client(fake)
    chunks = _Chunks()

    result = await client.send_streaming("Add a changelog\n\nwith details", chunks)

    assert fake.created_with["title"] == "Add a changelog"
    assert fake.created_with["assigneeIds"] == ["BOT_1"]
    texts = [c.text for c in chunks.items]
    assert texts[0] == '🔄 Creating GitHub issue for: "Add a changelog"\n'
    assert texts[1] == f"✅ Issue [#42]({ISSUE_URL}) created\n"
    assert isinstance(chunks.items[3], DualRendering)
    assert f'<iframe src="{ISSUE_URL}"' in chunks.items[3].html
    assert all(isinstance(c, PlainText) for i, c in enumerate(chunks.items) if i != 3)
    assert "now **completed**" in texts[-1]
    assert result.startswith(f"✅ GitHub Copilot session completed for [#42]({ISSUE_URL}).")
    assert f"Pull request: [#43]({PR_URL})" in result
    assert client.metrics()["requests"] == 1


@pytest.mark.asyncio
async def test_draft_then_closed_issue() -> None:
    fake = _FakeGitHub(issue_state="closed")
    result = await _client(fake).send_streaming("Fix it", _Chunks())
    assert "was closed before completion" in result


@pytest.mark.asyncio
async def test_closed_pull_request_is_not_completion() -> None:
    fake = _FakeGitHub(pull={"state": "closed", "draft": False, "merged": False})
    result = await _client(fake).send_streaming("Fix it", _Chunks())
    assert "was closed before completion" in result


@pytest.mark.asyncio
async def test_gives_up_after_session_timeout() -> None:
    fake = _FakeGitHub(pull={"state": "open", "draft": True})
    result = await _client(fake, session_timeout=0).send_streaming("Fix it", _Chunks())
    assert result.startswith(f"⌛ Stopped tracking [#42]({ISSUE_URL})")


@pytest.mark.asyncio
async def test_missing_copilot_actor_is_provider_error() -> None:
    fake = _FakeGitHub(actors=[{"login": "octocat", "id": "U_1"}])
    with pytest.raises(ProviderError, match="not enabled"):
        await _client(fake).send_streaming("Fix it", _Chunks())


@pytest.mark.asyncio
async def test_github_failure_becomes_provider_error() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Bad credentials"})

    client = CopilotClient(
        token="bad",
        repository="acme/widgets",
        github=GitHubClient("bad", transport=httpx.MockTransport(broken)),
    )
    with pytest.raises(ProviderError, match="Bad credentials"):
        await client.send_streaming("Fix it", _Chunks())


@pytest.mark.asyncio
async def test_active_sessions_are_copilot_issues_only() -> None:
    sessions = await _client(_FakeGitHub()).get_active_sessions()
    assert [s.issue_number for s in sessions] == [42]


@pytest.mark.asyncio
async def test_cancel_reports_refusal() -> None:
    assert await _client(_FakeGitHub()).cancel_session(42) is False
