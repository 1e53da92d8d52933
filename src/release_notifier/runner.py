"""Run one release notification from configuration to posted comments.

The pipeline:
1. Skip experimental releases entirely
2. Bound the release window, either by the released tag and the tag before
   it or by the latest release and the last stable release
3. Select the PRs merged inside the window
4. Comment on those PRs and the issues they close

Window-resolution errors abort before any write. Dispatch failures are
collected and raised together as one DispatchError after every write has
been attempted.
"""

from __future__ import annotations

from dataclasses import dataclass

from release_notifier.config import NotifierConfig
from release_notifier.errors import DispatchError
from release_notifier.forge.github import ForgeClientProtocol, GitHubForgeClient
from release_notifier.logging_config import get_logger
from release_notifier.nightlies import prune_nightly_releases
from release_notifier.notify import NotificationDispatcher
from release_notifier.schemas import ReleaseWindow, RunSummary
from release_notifier.tags import clean_tag_name, resolve_previous_tag
from release_notifier.window import (
    release_base_branches,
    resolve_release_window,
    select_prs_in_window,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Bounds:
    current: str
    previous: str
    window: ReleaseWindow
    is_prerelease: bool
    version: str


def build_client(config: NotifierConfig) -> GitHubForgeClient:
    return GitHubForgeClient(
        token=config.token,
        api_url=config.api_url,
        max_concurrency=config.max_concurrency,
    )


async def run(config: NotifierConfig, client: ForgeClientProtocol) -> RunSummary:
    """Notify every PR and issue shipped in the release.

    Args:
        config: Run configuration
        client: Forge client

    Returns:
        Summary of the PRs and issues handled

    Raises:
        TagNotFound: If the released tag is not in the tag history
        NoPreviousTagFound: If there is nothing to compare the tag against
        ReleaseNotFound: If the release history has no window to offer
        ForgeRequestError: If reading tags, releases or pull requests fails
        DispatchError: If any comment, label removal or close failed
    """
    if config.is_experimental:
        logger.info("experimental_release_skipped", tag=config.tag)
        return RunSummary(current_tag=config.tag, skipped=True)

    if config.window_source == "releases":
        bounds = await _release_bounds(config, client)
    else:
        bounds = await _tag_bounds(config, client)

    base_branches = None
    if config.filter_by_base_branch:
        base_branches = release_base_branches(
            is_nightly=bool(config.is_nightly),
            is_prerelease=bounds.is_prerelease,
            default_branch=config.default_branch,
            nightly_branch=config.nightly_branch,
        )

    prs = await select_prs_in_window(
        client,
        config.repository,
        bounds.window,
        base_branches=base_branches,
        path_prefixes=config.path_prefixes,
        ignored_titles=config.ignored_pr_titles,
        previous=bounds.previous,
        current=bounds.current,
    )

    logger.info(
        "prs_found",
        count=len(prs),
        current=bounds.current,
        previous=bounds.previous,
        paths=", ".join(config.path_prefixes),
    )
    for pr in prs:
        logger.info("pr_selected", pr=pr.number, url=config.pull_url(pr.number))

    dispatcher = NotificationDispatcher(
        client,
        config.repository,
        is_nightly=bool(config.is_nightly),
        awaiting_release_label=config.awaiting_release_label,
        dry_run=config.dry_run,
    )
    report = await dispatcher.notify(prs, bounds.version)

    summary = RunSummary(
        current_tag=bounds.current,
        previous_tag=bounds.previous,
        pull_requests=[pr.number for pr in prs],
        issues_commented=report.issues_commented,
        issues_closed=report.issues_closed,
        labels_removed=report.labels_removed,
        failures=report.failures,
    )
    logger.info(
        "run_complete",
        prs=len(summary.pull_requests),
        issues_commented=len(summary.issues_commented),
        issues_closed=len(summary.issues_closed),
        failures=len(summary.failures),
    )

    if summary.failures:
        raise DispatchError(summary.failures)
    return summary


async def prune(config: NotifierConfig, client: ForgeClientProtocol) -> int:
    """Delete nightly releases other than ``config.tag``.

    Returns:
        Number of releases deleted

    Raises:
        DispatchError: If any deletion failed
    """
    deleted, failures = await prune_nightly_releases(
        client, config.repository, config.tag, dry_run=config.dry_run
    )
    if failures:
        raise DispatchError(failures)
    return len(deleted)


async def _tag_bounds(config: NotifierConfig, client: ForgeClientProtocol) -> _Bounds:
    tags = [tag async for tag in client.iter_tags(config.repository, config.package_name)]
    logger.info("tags_loaded", count=len(tags), package=config.package_name)
    pair = resolve_previous_tag(config.tag, tags)
    return _Bounds(
        current=pair.current.name,
        previous=pair.previous.name,
        window=pair.window,
        is_prerelease=pair.current.is_prerelease,
        version=config.release_version,
    )


async def _release_bounds(config: NotifierConfig, client: ForgeClientProtocol) -> _Bounds:
    pair = await resolve_release_window(client, config.repository, config.package_name)
    if pair.current.tag_name != config.tag:
        logger.warning(
            "latest_release_is_not_tag",
            latest=pair.current.tag_name,
            tag=config.tag,
        )
    return _Bounds(
        current=pair.current.tag_name,
        previous=pair.previous.tag_name,
        window=pair.window,
        is_prerelease=pair.current.prerelease,
        version=clean_tag_name(pair.current.tag_name, config.package_name),
    )
