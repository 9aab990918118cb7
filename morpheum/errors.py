"""Error taxonomy shared across the bot.

Configuration errors are reported to the user before any external call is
made. Provider errors propagate to the task handler, which renders them into
the room. Override failures never raise; they are logged and skipped.
"""


class MorpheumError(RuntimeError):
    """Base class for bot errors."""


class ConfigurationError(MorpheumError):
    """A provider was requested but its credential or target is missing."""


class ProviderError(MorpheumError):
    """An LLM backend failed (transport error, bad response, auth failure)."""


class GitHubError(MorpheumError):
    """A GitHub API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GitUrlParseError(ValueError):
    """A Git URL could not be parsed into owner/repo."""


class MatrixError(MorpheumError):
    """The Matrix homeserver rejected a request."""

    def __init__(self, message: str, status_code: int | None = None, errcode: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.errcode = errcode
