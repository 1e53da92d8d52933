"""Delete old nightly releases, keeping only the one just published."""

from __future__ import annotations

import asyncio

from release_notifier.errors import ForgeRequestError
from release_notifier.forge.github import ForgeClientProtocol
from release_notifier.logging_config import get_logger
from release_notifier.schemas import DispatchFailure, Release

logger = get_logger(__name__)


def is_nightly_release(release: Release) -> bool:
    return "nightly" in release.tag_name


async def prune_nightly_releases(
    client: ForgeClientProtocol,
    repo: str,
    keep_tag: str,
    *,
    dry_run: bool = False,
) -> tuple[list[Release], list[DispatchFailure]]:
    """Delete every nightly release except ``keep_tag``.

    Args:
        client: Forge client
        repo: Repository in "owner/name" format
        keep_tag: Tag name of the release to keep
        dry_run: Log what would be deleted without deleting it

    Returns:
        The releases deleted (or that would be) and the deletions that failed
    """
    doomed = [
        release
        async for release in client.iter_releases(repo)
        if is_nightly_release(release) and release.tag_name != keep_tag
    ]
    logger.info("nightlies_to_delete", count=len(doomed), keep=keep_tag)

    async def delete(release: Release) -> DispatchFailure | None:
        if dry_run:
            logger.info("dry_run_skip", action="delete_release", tag=release.tag_name)
            return None
        try:
            await client.delete_release(repo, release.id)
        except ForgeRequestError as exc:
            logger.error("release_delete_failed", tag=release.tag_name, error=str(exc))
            return DispatchFailure(action="delete_release", target=release.id, error=str(exc))
        logger.info("release_deleted", tag=release.tag_name)
        return None

    results = await asyncio.gather(*(delete(release) for release in doomed))
    failures = [failure for failure in results if failure is not None]
    failed_ids = {failure.target for failure in failures}
    deleted = [release for release in doomed if release.id not in failed_ids]
    return deleted, failures
