"""Thin async GitHub client (REST + GraphQL) built on httpx."""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from morpheum.errors import GitHubError
from morpheum.github.giturl import parse_git_url

_COMMIT_COUNT_QUERY = """
query GetCommitCount($owner: String!, $repo: String!) {
  repository(owner: $owner, name: $repo) {
    defaultBranchRef {
      target {
        ... on Commit {
          history {
            totalCount
          }
        }
      }
    }
  }
}
"""


@dataclass
class RepositoryInfo:
    name: str
    full_name: str
    description: str | None
    private: bool
    license: str | None
    default_branch: str
    created_at: str
    updated_at: str
    pushed_at: str
    clone_url: str
    ssh_url: str
    html_url: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RepositoryInfo":
        lic = data.get("license") or {}
        return cls(
            name=data.get("name", ""),
            full_name=data.get("full_name", ""),
            description=data.get("description"),
            private=bool(data.get("private")),
            license=lic.get("name") if lic else None,
            default_branch=data.get("default_branch", "main"),
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
            pushed_at=data.get("pushed_at") or "",
            clone_url=data.get("clone_url", ""),
            ssh_url=data.get("ssh_url", ""),
            html_url=data.get("html_url", ""),
        )


@dataclass
class LastCommit:
    sha: str
    message: str
    author: str
    date: str


@dataclass
class RepositoryStats:
    repository: RepositoryInfo
    commit_count: int = 0
    contributors: list[tuple[str, int]] = field(default_factory=list)
    last_commit: LastCommit | None = None


class GitHubClient:
    """GitHub API access for project rooms and the Copilot session client."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "morpheum-bot",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Perform a REST call and return decoded JSON (None for 204)."""
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise GitHubError(f"GitHub request {method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            message = ""
            try:
                message = resp.json().get("message", "")
            except ValueError:
                message = resp.text[:200]
            raise GitHubError(
                f"GitHub {method} {path} returned {resp.status_code}: {message}",
                status_code=resp.status_code,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    async def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL query; errors in the payload raise GitHubError."""
        payload = await self.request(
            "POST", "/graphql", json={"query": query, "variables": variables or {}}
        )
        if not isinstance(payload, dict):
            raise GitHubError("GitHub GraphQL returned an empty response")
        if payload.get("errors"):
            messages = "; ".join(e.get("message", "?") for e in payload["errors"])
            raise GitHubError(f"GitHub GraphQL error: {messages}")
        return payload.get("data") or {}

    async def create_repository(
        self,
        name: str,
        description: str | None = None,
        private: bool = False,
        auto_init: bool = True,
        license_template: str | None = None,
    ) -> RepositoryInfo:
        body: dict[str, Any] = {"name": name, "private": private, "auto_init": auto_init}
        if description:
            body["description"] = description
        if license_template:
            body["license_template"] = license_template
        data = await self.request("POST", "/user/repos", json=body)
        logger.info(f"Created GitHub repository {data.get('full_name')}")
        return RepositoryInfo.from_api(data)

    async def get_repository_stats(self, git_url: str) -> RepositoryStats:
        """Repository metadata plus commit count, last commit and top contributors.

        Only the repository lookup is fatal; the extras are best effort.
        """
        info = parse_git_url(git_url)
        owner, repo = info.owner, info.repo
        repository = RepositoryInfo.from_api(await self.request("GET", f"/repos/{owner}/{repo}"))
        stats = RepositoryStats(repository=repository)

        try:
            commits = await self.request(
                "GET",
                f"/repos/{owner}/{repo}/commits",
                params={"sha": repository.default_branch, "per_page": 1},
            )
            if commits:
                commit = commits[0]
                author = (commit.get("commit") or {}).get("author") or {}
                stats.last_commit = LastCommit(
                    sha=commit.get("sha", ""),
                    message=(commit.get("commit") or {}).get("message", ""),
                    author=author.get("name") or "Unknown",
                    date=author.get("date") or "",
                )
                stats.commit_count = await self._commit_count(owner, repo)
        except GitHubError as e:
            logger.warning(f"Could not fetch commit information for {owner}/{repo}: {e}")

        try:
            contributors = await self.request(
                "GET", f"/repos/{owner}/{repo}/contributors", params={"per_page": 10}
            )
            stats.contributors = [
                (c.get("login") or "unknown", int(c.get("contributions", 0)))
                for c in (contributors or [])
            ]
        except GitHubError as e:
            logger.warning(f"Could not fetch contributors for {owner}/{repo}: {e}")

        return stats

    async def _commit_count(self, owner: str, repo: str) -> int:
        try:
            data = await self.graphql(_COMMIT_COUNT_QUERY, {"owner": owner, "repo": repo})
            return int(data["repository"]["defaultBranchRef"]["target"]["history"]["totalCount"])
        except (GitHubError, KeyError, TypeError) as e:
            logger.warning(f"Could not get exact commit count, estimating: {e}")
        sample = await self.request(
            "GET", f"/repos/{owner}/{repo}/commits", params={"per_page": 100}
        )
        return min(len(sample or []), 100)
