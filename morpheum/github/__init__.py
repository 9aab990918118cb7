"""GitHub helpers: URL parsing and the API client."""

from morpheum.github.client import GitHubClient, RepositoryInfo, RepositoryStats
from morpheum.github.giturl import GitUrlInfo, is_valid_git_info, parse_git_url

__all__ = [
    "GitHubClient",
    "GitUrlInfo",
    "RepositoryInfo",
    "RepositoryStats",
    "is_valid_git_info",
    "parse_git_url",
]
