"""Exception types raised by the release notifier.

Configuration and tag-resolution errors abort a run before any comments
are posted. Forge request errors propagate from the adapter; the dispatcher
collects them per item and raises a single ``DispatchError`` at the end.
"""

from __future__ import annotations

from release_notifier.schemas import DispatchFailure


class ReleaseNotifierError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ReleaseNotifierError):
    """A required setting is missing or malformed."""


# ---------------------------------------------------------------------------
# Tag Resolution
# ---------------------------------------------------------------------------


class TagResolutionError(ReleaseNotifierError):
    """No release window can be computed for the requested tag."""

    def __init__(self, tag_name: str, message: str) -> None:
        super().__init__(message)
        self.tag_name = tag_name


class TagNotFound(TagResolutionError):
    def __init__(self, tag_name: str) -> None:
        super().__init__(tag_name, f"Could not find tag {tag_name}")


class NoPreviousTagFound(TagResolutionError):
    def __init__(self, tag_name: str, stable: bool) -> None:
        kind = "stable" if stable else "prerelease"
        super().__init__(tag_name, f"Could not find previous {kind} tag from {tag_name}")
        self.stable = stable


class ReleaseNotFound(TagResolutionError):
    """The release history has no latest release, or no stable one before it."""


# ---------------------------------------------------------------------------
# Forge
# ---------------------------------------------------------------------------


class ForgeRequestError(ReleaseNotifierError):
    """A forge API call failed.

    Attributes:
        method: HTTP method of the failed call
        url: Request URL
        status: HTTP status code, None for transport errors
    """

    def __init__(
        self,
        message: str,
        *,
        method: str = "",
        url: str = "",
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.url = url
        self.status = status


class RateLimitError(ForgeRequestError):
    """The forge rejected a call for exceeding a rate limit.

    Primary limits carry a reset time and are retried once by the adapter.
    Secondary (abuse) limits are raised without a retry.
    """

    def __init__(
        self,
        message: str,
        *,
        primary: bool,
        retry_after: float,
        method: str = "",
        url: str = "",
        status: int | None = None,
    ) -> None:
        super().__init__(message, method=method, url=url, status=status)
        self.primary = primary
        self.retry_after = retry_after


class GraphQLError(ForgeRequestError):
    """The GraphQL endpoint answered 200 with an ``errors`` payload."""


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class DispatchError(ReleaseNotifierError):
    """One or more independent forge writes failed."""

    def __init__(self, failures: list[DispatchFailure]) -> None:
        self.failures = list(failures)
        lines = "\n".join(f"  - {f.describe()}" for f in self.failures)
        super().__init__(f"{len(self.failures)} forge operation(s) failed:\n{lines}")
