"""GitHub client for the data a release notification run needs.

Reads:
- Tags with their tagger/commit dates (GraphQL ``refs``)
- Closed pull requests, newest update first (REST ``pulls``)
- Changed files of a pull request (REST ``pulls/{n}/files``)
- Closing issue references of a pull request (GraphQL ``closingIssuesReferences``)
- Releases (REST ``releases``)

Writes:
- Issue/PR comments, label removal, closing issues, deleting releases

Design notes:
- Uses one httpx.AsyncClient for the whole run; callers use the client as
  an async context manager
- Every paginated endpoint is an async generator, so callers can stop early
  and never hold more pages than they consume
- A semaphore bounds in-flight requests to stay under secondary rate limits
- Primary rate limits are retried exactly once (tenacity) after the delay
  the forge asks for; secondary rate limits are logged and raised
- The Protocol lets the core run against ``MockForgeClient`` in tests

GitHub API docs: https://docs.github.com/en/rest
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from release_notifier.errors import ForgeRequestError, GraphQLError, RateLimitError
from release_notifier.logging_config import get_logger
from release_notifier.schemas import PullRequest, Release, Tag
from release_notifier.tags import build_tag

logger = get_logger(__name__)

MAX_RATE_LIMIT_WAIT_SECONDS = 3600.0

TAGS_QUERY = """
query ($owner: String!, $repo: String!, $after: String) {
  repository(owner: $owner, name: $repo) {
    refs(
      refPrefix: "refs/tags/"
      first: 100
      after: $after
      orderBy: { field: TAG_COMMIT_DATE, direction: DESC }
    ) {
      pageInfo {
        hasNextPage
        endCursor
      }
      nodes {
        name
        target {
          ... on Tag {
            tagger {
              date
            }
            target {
              ... on Commit {
                committedDate
              }
            }
          }
          ... on Commit {
            committedDate
          }
        }
      }
    }
  }
}
"""

CLOSING_ISSUES_QUERY = """
query ($url: URI!, $after: String) {
  resource(url: $url) {
    ... on PullRequest {
      closingIssuesReferences(first: 100, after: $after) {
        nodes {
          number
        }
        pageInfo {
          hasNextPage
          endCursor
        }
      }
    }
  }
}
"""

# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class ForgeClientProtocol(Protocol):
    """Everything the notifier asks of the forge.

    Paginated reads are async iterators; writes return nothing and raise
    ForgeRequestError on failure.
    """

    def iter_tags(self, repo: str, package_name: str | None = None) -> AsyncIterator[Tag]:
        ...

    def iter_closed_pull_requests(
        self, repo: str, base: str | None = None
    ) -> AsyncIterator[PullRequest]:
        ...

    def iter_changed_files(self, repo: str, pr_number: int) -> AsyncIterator[str]:
        ...

    def iter_closing_issue_references(self, pr_url: str) -> AsyncIterator[int]:
        ...

    def iter_releases(self, repo: str) -> AsyncIterator[Release]:
        ...

    async def create_comment(self, repo: str, number: int, body: str) -> None:
        ...

    async def remove_label(self, repo: str, number: int, label: str) -> None:
        ...

    async def close_issue(self, repo: str, number: int) -> None:
        ...

    async def delete_release(self, repo: str, release_id: int) -> None:
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubForgeClient:
    """GitHub REST + GraphQL client using httpx.

    Usage:
        async with GitHubForgeClient(token="ghp_...") as client:
            async for tag in client.iter_tags("myorg/app"):
                ...
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str,
        api_url: str = BASE_URL,
        max_concurrency: int = 8,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            token: GitHub token with permission to comment and close issues
            api_url: REST API root (GitHub Enterprise: "https://host/api/v3")
            max_concurrency: Maximum requests in flight at once
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Coroutine used to wait out a primary rate limit
        """
        self._api_url = api_url.rstrip("/")
        self._graphql_url = graphql_endpoint(self._api_url)
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {token}",
        }
        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers=self._headers,
            timeout=timeout,
            transport=transport,
        )
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._sleep = sleep

    async def __aenter__(self) -> "GitHubForgeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- reads ---------------------------------------------------------------

    async def iter_tags(self, repo: str, package_name: str | None = None) -> AsyncIterator[Tag]:
        """Yield every semver tag of the repository, newest commit first.

        Tags without a usable date, outside the package namespace, or whose
        name is not a semantic version are skipped.
        """
        owner, name = repo.split("/", 1)
        nodes = self._paginate_graphql(
            TAGS_QUERY, {"owner": owner, "repo": name}, ("repository", "refs")
        )
        async for node in nodes:
            date = _tag_date(node)
            if date is None:
                logger.debug("tag_skipped_no_date", tag=node.get("name"))
                continue
            tag = build_tag(node["name"], date, package_name)
            if tag is not None:
                yield tag

    async def iter_closed_pull_requests(
        self, repo: str, base: str | None = None
    ) -> AsyncIterator[PullRequest]:
        """Yield closed pull requests, most recently updated first."""
        params = {"state": "closed", "sort": "updated", "direction": "desc"}
        if base:
            params["base"] = base
        async for item in self._paginate(f"/repos/{repo}/pulls", params):
            yield PullRequest.from_api(item)

    async def iter_changed_files(self, repo: str, pr_number: int) -> AsyncIterator[str]:
        """Yield changed paths; renames yield both the old and the new path."""
        async for item in self._paginate(f"/repos/{repo}/pulls/{pr_number}/files"):
            yield item["filename"]
            if item.get("previous_filename"):
                yield item["previous_filename"]

    async def iter_closing_issue_references(self, pr_url: str) -> AsyncIterator[int]:
        nodes = self._paginate_graphql(
            CLOSING_ISSUES_QUERY, {"url": pr_url}, ("resource", "closingIssuesReferences")
        )
        async for node in nodes:
            yield node["number"]

    async def iter_releases(self, repo: str) -> AsyncIterator[Release]:
        async for item in self._paginate(f"/repos/{repo}/releases"):
            yield Release.from_api(item)

    # -- writes --------------------------------------------------------------

    async def create_comment(self, repo: str, number: int, body: str) -> None:
        await self._request("POST", f"/repos/{repo}/issues/{number}/comments", json={"body": body})

    async def remove_label(self, repo: str, number: int, label: str) -> None:
        """Remove a label; a label that is already gone is not an error."""
        url = f"/repos/{repo}/issues/{number}/labels/{quote(label, safe='')}"
        try:
            await self._request("DELETE", url)
        except ForgeRequestError as exc:
            if exc.status != 404:
                raise
            logger.info("label_already_absent", target=number, label=label)

    async def close_issue(self, repo: str, number: int) -> None:
        await self._request(
            "PATCH",
            f"/repos/{repo}/issues/{number}",
            json={"state": "closed", "state_reason": "completed"},
        )

    async def delete_release(self, repo: str, release_id: int) -> None:
        await self._request("DELETE", f"/repos/{repo}/releases/{release_id}")

    # -- plumbing ------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying once if a primary rate limit is hit.

        Raises:
            RateLimitError: On a secondary rate limit, or a primary one that
                            persists after the retry
            ForgeRequestError: On any other failure
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_primary_rate_limit),
            stop=stop_after_attempt(2),
            wait=_wait_for_rate_limit_reset,
            before_sleep=_log_rate_limit_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._send(method, url, **kwargs)
        return response

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._semaphore:
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                raise ForgeRequestError(
                    f"{method} {url} failed: {exc}", method=method, url=url
                ) from exc
        _raise_for_status(method, url, response)
        return response

    async def _paginate(
        self, url: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[dict]:
        """Yield items from a paginated REST list endpoint.

        GitHub returns a 'Link' header with the URL of the next page; that
        URL already carries the query string, so params go on the first
        request only.
        """
        next_url: str | None = url
        query: dict[str, Any] | None = {"per_page": 100, **(params or {})}

        while next_url:
            resp = await self._request("GET", next_url, params=query)
            for item in resp.json():
                yield item
            next_url = self._parse_next_link(resp.headers.get("link", ""))
            query = None

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict:
        resp = await self._request(
            "POST", self._graphql_url, json={"query": query, "variables": variables}
        )
        payload = resp.json()
        if payload.get("errors"):
            messages = "; ".join(e.get("message", str(e)) for e in payload["errors"])
            raise GraphQLError(
                f"GraphQL query failed: {messages}",
                method="POST",
                url=self._graphql_url,
                status=resp.status_code,
            )
        return payload.get("data") or {}

    async def _paginate_graphql(
        self,
        query: str,
        variables: dict[str, Any],
        path: tuple[str, ...],
    ) -> AsyncIterator[dict]:
        """Yield the ``nodes`` of a cursor-paginated GraphQL connection."""
        after: str | None = None
        while True:
            data = await self._graphql(query, {**variables, "after": after})
            connection: Any = data
            for key in path:
                connection = (connection or {}).get(key)
            if not connection:
                return

            for node in connection.get("nodes") or []:
                yield node

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return
            after = page_info.get("endCursor")

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the 'next' URL from a GitHub Link header."""
        if not link_header:
            return None
        for part in link_header.split(","):
            if 'rel="next"' in part:
                return part.split(";")[0].strip().strip("<>")
        return None


def graphql_endpoint(api_url: str) -> str:
    """GraphQL URL for a REST API root (GitHub Enterprise keeps it beside /v3)."""
    if api_url.endswith("/api/v3"):
        return api_url[: -len("/v3")] + "/graphql"
    return f"{api_url}/graphql"


def _tag_date(node: dict) -> datetime | None:
    target = node.get("target") or {}
    raw = (
        (target.get("tagger") or {}).get("date")
        or (target.get("target") or {}).get("committedDate")
        or target.get("committedDate")
    )
    return datetime.fromisoformat(raw) if raw else None


# ---------------------------------------------------------------------------
# Error Classification
# ---------------------------------------------------------------------------


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", ""))
    except (ValueError, AttributeError):
        return response.text[:200]


def _raise_for_status(method: str, url: str, response: httpx.Response) -> None:
    """Turn an unsuccessful response into the matching exception."""
    if response.is_success:
        return

    status = response.status_code
    message = _error_message(response)
    headers = response.headers

    if status in (403, 429):
        retry_after = headers.get("retry-after")
        if headers.get("x-ratelimit-remaining") == "0":
            delay = _retry_after_seconds(retry_after)
            if delay is None:
                delay = _seconds_until_reset(headers.get("x-ratelimit-reset"))
            raise RateLimitError(
                f"{method} {url} hit the primary rate limit: {message}",
                primary=True,
                retry_after=delay,
                method=method,
                url=url,
                status=status,
            )
        if retry_after is not None or "secondary rate limit" in message.lower():
            logger.warning(
                "secondary_rate_limit",
                method=method,
                url=url,
                retry_after=retry_after,
                message=message,
            )
            raise RateLimitError(
                f"{method} {url} hit a secondary rate limit: {message}",
                primary=False,
                retry_after=_retry_after_seconds(retry_after) or 0.0,
                method=method,
                url=url,
                status=status,
            )

    raise ForgeRequestError(
        f"{method} {url} returned {status}: {message}",
        method=method,
        url=url,
        status=status,
    )


def _retry_after_seconds(value: str | None) -> float | None:
    """Parse a Retry-After header given as seconds or as an HTTP-date.

    Returns:
        Seconds to wait (never negative), or None if the value is missing
        or unreadable
    """
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning("retry_after_unparsable", value=value)
        return None
    return max(0.0, when.timestamp() - time.time())


def _seconds_until_reset(value: str | None) -> float:
    """Seconds until an ``x-ratelimit-reset`` epoch timestamp; 0 if unreadable."""
    try:
        reset = float(value) if value is not None else time.time()
    except ValueError:
        return 0.0
    return max(0.0, reset - time.time())


def _is_primary_rate_limit(exc: BaseException) -> bool:
    return isinstance(exc, RateLimitError) and exc.primary


def _wait_for_rate_limit_reset(retry_state: RetryCallState) -> float:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, RateLimitError):
        return min(exc.retry_after, MAX_RATE_LIMIT_WAIT_SECONDS)
    return 0.0


def _log_rate_limit_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "primary_rate_limit_retry",
        url=getattr(exc, "url", ""),
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


# ---------------------------------------------------------------------------
# Mock Implementation (for testing)
# ---------------------------------------------------------------------------


class MockForgeClient:
    """In-memory forge that records every write.

    Use this in tests and local dry runs when you don't want to hit GitHub.

    Usage:
        client = MockForgeClient(tags=[...], pull_requests=[...])
        await run(config, client)
        assert client.comments == [...]

    Args:
        tags: Tags returned by iter_tags (package filtering is not applied)
        pull_requests: Closed PRs; served newest ``updated_at`` first
        files: PR number -> changed paths
        closing_references: PR html_url -> issue numbers
        releases: Releases returned by iter_releases
        fail_on: (action, target) pairs whose write raises ForgeRequestError,
                 e.g. ("comment", 12) or ("close", 7)
    """

    def __init__(
        self,
        tags: list[Tag] | None = None,
        pull_requests: list[PullRequest] | None = None,
        files: dict[int, list[str]] | None = None,
        closing_references: dict[str, list[int]] | None = None,
        releases: list[Release] | None = None,
        fail_on: set[tuple[str, int]] | None = None,
    ) -> None:
        self.tags = list(tags or [])
        self.pull_requests = list(pull_requests or [])
        self.files = dict(files or {})
        self.closing_references = dict(closing_references or {})
        self.releases = list(releases or [])
        self.fail_on = set(fail_on or set())

        self.comments: list[tuple[int, str]] = []
        self.removed_labels: list[tuple[int, str]] = []
        self.closed_issues: list[int] = []
        self.deleted_releases: list[int] = []
        self.files_requested: list[int] = []
        self.pull_requests_served = 0
        self.pull_request_bases: list[str | None] = []
        self.closed = False

    async def __aenter__(self) -> "MockForgeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.closed = True

    async def iter_tags(self, repo: str, package_name: str | None = None) -> AsyncIterator[Tag]:
        for tag in self.tags:
            yield tag

    async def iter_closed_pull_requests(
        self, repo: str, base: str | None = None
    ) -> AsyncIterator[PullRequest]:
        self.pull_request_bases.append(base)
        ordered = sorted(
            self.pull_requests,
            key=lambda pr: pr.updated_at.timestamp() if pr.updated_at else float("-inf"),
            reverse=True,
        )
        for pr in ordered:
            if base is not None and pr.base_branch != base:
                continue
            self.pull_requests_served += 1
            yield pr

    async def iter_changed_files(self, repo: str, pr_number: int) -> AsyncIterator[str]:
        self.files_requested.append(pr_number)
        for path in self.files.get(pr_number, []):
            yield path

    async def iter_closing_issue_references(self, pr_url: str) -> AsyncIterator[int]:
        for number in self.closing_references.get(pr_url, []):
            yield number

    async def iter_releases(self, repo: str) -> AsyncIterator[Release]:
        for release in self.releases:
            yield release

    async def create_comment(self, repo: str, number: int, body: str) -> None:
        self._maybe_fail("comment", number)
        self.comments.append((number, body))

    async def remove_label(self, repo: str, number: int, label: str) -> None:
        self._maybe_fail("remove_label", number)
        self.removed_labels.append((number, label))

    async def close_issue(self, repo: str, number: int) -> None:
        self._maybe_fail("close", number)
        self.closed_issues.append(number)

    async def delete_release(self, repo: str, release_id: int) -> None:
        self._maybe_fail("delete_release", release_id)
        self.deleted_releases.append(release_id)

    def commented_on(self, number: int) -> list[str]:
        """Bodies of all comments posted on ``number``."""
        return [body for target, body in self.comments if target == number]

    def _maybe_fail(self, action: str, target: int) -> None:
        if (action, target) in self.fail_on:
            raise ForgeRequestError(f"mock failure: {action} #{target}", status=500)
