"""Parse the Git URL spellings users paste into `!project` commands."""

import re
from dataclasses import dataclass

from morpheum.errors import GitUrlParseError

_SSH_RE = re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$")
_HTTPS_RE = re.compile(r"^https://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")
_SHORT_RE = re.compile(r"^([a-zA-Z0-9._-]+)/([a-zA-Z0-9._-]+)$")
_NAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")
_EDGE_RE = re.compile(r"^[._-]|[._-]$")

# GitHub's own limits on login and repository name length
MAX_OWNER_LEN = 39
MAX_REPO_LEN = 100


@dataclass(frozen=True)
class GitUrlInfo:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_git_url(git_url: str) -> GitUrlInfo:
    """
    Extract owner and repository from an SSH, HTTPS or ``owner/repo`` URL.

    Raises:
        GitUrlParseError: If the URL matches none of the supported forms.
    """
    if not git_url or not isinstance(git_url, str):
        raise GitUrlParseError("Git URL is required and must be a string")

    url = git_url.strip()
    for pattern in (_SSH_RE, _HTTPS_RE, _SHORT_RE):
        m = pattern.match(url)
        if m:
            return GitUrlInfo(owner=m.group(1), repo=m.group(2))

    raise GitUrlParseError(
        "Invalid Git URL format. Supported formats:\n"
        "- SSH: git@github.com:user/repo\n"
        "- HTTPS: https://github.com/user/repo\n"
        "- Short: user/repo"
    )


def is_valid_git_info(info: GitUrlInfo) -> bool:
    """Check a parsed URL against GitHub naming rules."""
    owner, repo = info.owner, info.repo
    if not owner or not repo:
        return False
    if len(owner) > MAX_OWNER_LEN or len(repo) > MAX_REPO_LEN:
        return False
    if not _NAME_RE.match(owner) or not _NAME_RE.match(repo):
        return False
    if _EDGE_RE.search(owner) or _EDGE_RE.search(repo):
        return False
    return True
