"""Select the pull requests merged inside a release window.

A window is bounded by the previous tag and the current one, or by the last
stable release and the latest release. A PR belongs to the window when it
was merged strictly after the start and strictly before the end. Optionally
the selection is narrowed to PRs targeting particular base branches and to
PRs that touch files under configured path prefixes.

Closed PRs are paged newest-update-first. A PR's ``merged_at`` can never be
later than its ``updated_at``, so paging stops at the first PR last updated
at or before the window start.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from release_notifier.errors import ReleaseNotFound
from release_notifier.forge.github import ForgeClientProtocol
from release_notifier.logging_config import get_logger
from release_notifier.schemas import PullRequest, Release, ReleaseWindow, Tag
from release_notifier.tags import in_package_namespace

logger = get_logger(__name__)


def touches_prefix(paths: Iterable[str], prefixes: Sequence[str]) -> bool:
    """Whether any path starts with any prefix (plain string match, no globs)."""
    return any(path.startswith(prefix) for path in paths for prefix in prefixes)


def release_base_branches(
    *,
    is_nightly: bool,
    is_prerelease: bool,
    default_branch: str | None,
    nightly_branch: str | None,
) -> list[str] | None:
    """Base branches whose PRs can ship in this release.

    Nightlies come from the nightly branch and stable releases from the
    default branch. Other prereleases may have been cut from either, so both
    are returned. None means "don't filter by base".
    """
    if is_nightly:
        branches = [nightly_branch]
    elif not is_prerelease:
        branches = [default_branch]
    else:
        branches = [default_branch, nightly_branch]

    unique = list(dict.fromkeys(b for b in branches if b))
    return unique or None


# ---------------------------------------------------------------------------
# Release-bounded windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReleasePair:
    """The latest release and the last stable release published before it."""

    current: Release
    previous: Release

    @property
    def window(self) -> ReleaseWindow:
        return ReleaseWindow.between_releases(self.previous, self.current)


async def resolve_release_window(
    client: ForgeClientProtocol,
    repo: str,
    package_name: str | None = None,
) -> ReleasePair:
    """Find the latest release and the last stable release before it.

    Drafts and releases with no date are ignored. Releases are ordered by
    publish time; the window is bounded by their creation times.

    Args:
        client: Forge client
        repo: Repository in "owner/name" format
        package_name: Only consider releases in this package's tag namespace

    Returns:
        The latest release and the stable release preceding it

    Raises:
        ReleaseNotFound: If there are no releases, or no stable release
                         older than the latest one
    """
    releases = [
        release
        async for release in client.iter_releases(repo)
        if not release.draft
        and release.published_or_created is not None
        and in_package_namespace(release.tag_name, package_name)
    ]
    ordered = sorted(releases, key=lambda r: r.published_or_created, reverse=True)
    if not ordered:
        raise ReleaseNotFound("", f"Could not find any published release in {repo}")

    latest = ordered[0]
    previous = next((r for r in ordered[1:] if r.is_stable), None)
    if previous is None:
        raise ReleaseNotFound(
            latest.tag_name, f"Could not find a stable release before {latest.tag_name}"
        )

    logger.info("release_window_resolved", current=latest.tag_name, previous=previous.tag_name)
    return ReleasePair(current=latest, previous=previous)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


async def select_merged_prs(
    client: ForgeClientProtocol,
    repo: str,
    previous: Tag,
    current: Tag,
    **options: Any,
) -> list[PullRequest]:
    """List the PRs merged between the ``previous`` and ``current`` tags.

    Accepts the same keyword options as ``select_prs_in_window``.
    """
    return await select_prs_in_window(
        client,
        repo,
        ReleaseWindow.between(previous, current),
        previous=previous.name,
        current=current.name,
        **options,
    )


async def select_prs_in_window(
    client: ForgeClientProtocol,
    repo: str,
    window: ReleaseWindow,
    *,
    base_branches: Sequence[str] | None = None,
    path_prefixes: Sequence[str] | None = None,
    ignored_titles: Iterable[str] = (),
    previous: str = "",
    current: str = "",
) -> list[PullRequest]:
    """List the PRs merged inside ``window``.

    Args:
        client: Forge client
        repo: Repository in "owner/name" format
        window: Open interval the merge time must fall in
        base_branches: Keep only PRs targeting one of these branches. Each
                       branch is queried separately and the results unioned.
        path_prefixes: Keep only PRs that changed a file under one of these
        ignored_titles: PR titles (case-insensitive) to leave out
        previous: Name of the tag or release opening the window, for logs
        current: Name of the tag or release closing the window, for logs

    Returns:
        The selected PRs, ascending by number, with ``files`` filled in when
        path filtering was applied
    """
    if window.is_empty:
        logger.warning(
            "empty_release_window",
            previous=previous,
            current=current,
            start=window.start.isoformat(),
            end=window.end.isoformat(),
        )
        return []

    ignored = {title.lower() for title in ignored_titles}
    selected: dict[int, PullRequest] = {}

    for base in base_branches or [None]:
        async for pr in client.iter_closed_pull_requests(repo, base=base):
            if pr.updated_at is not None and pr.updated_at <= window.start:
                break
            if pr.merged_at is None or not window.contains(pr.merged_at):
                continue
            if pr.title.lower() in ignored:
                logger.info("pr_skipped_release_pr", pr=pr.number, title=pr.title)
                continue
            selected[pr.number] = pr

    prs = [selected[number] for number in sorted(selected)]
    logger.info("prs_merged_in_window", count=len(prs), bases=base_branches)

    if path_prefixes:
        prs = await filter_by_paths(client, repo, prs, path_prefixes)

    return prs


async def filter_by_paths(
    client: ForgeClientProtocol,
    repo: str,
    prs: Sequence[PullRequest],
    prefixes: Sequence[str],
) -> list[PullRequest]:
    """Keep PRs that touched a file under one of ``prefixes``.

    Changed files are fetched concurrently, one listing per PR.
    """
    with_files = await asyncio.gather(*(_load_files(client, repo, pr) for pr in prs))

    kept = []
    for pr in with_files:
        if touches_prefix(pr.files, prefixes):
            kept.append(pr)
        else:
            logger.debug("pr_skipped_paths", pr=pr.number, prefixes=list(prefixes))
    return kept


async def _load_files(client: ForgeClientProtocol, repo: str, pr: PullRequest) -> PullRequest:
    files = [path async for path in client.iter_changed_files(repo, pr.number)]
    return pr.model_copy(update={"files": files})
