"""Work out which issues a pull request closes.

Two independent sources of evidence are merged with a set union:

- The forge's closing issue references. GitHub only creates these when the
  PR targets the default branch.
- Closing keywords in the PR description ("Fixes #12", "closes: #7"),
  which catch PRs sent to other branches.

Either source may be empty. A PR with neither simply closes nothing.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from release_notifier.forge.github import ForgeClientProtocol
from release_notifier.logging_config import get_logger

logger = get_logger(__name__)

# https://docs.github.com/en/issues/tracking-your-work-with-issues/linking-a-pull-request-to-an-issue
CLOSING_KEYWORD_RE = re.compile(
    r"(close|closes|closed|fix|fixes|fixed|resolve|resolves|resolved)\s*:?\s*#(\d+)",
    re.IGNORECASE,
)


def issues_from_body(body: str | None) -> set[int]:
    """Issue numbers named after a closing keyword in a PR description."""
    if not body:
        return set()
    return {int(match.group(2)) for match in CLOSING_KEYWORD_RE.finditer(body)}


async def issues_from_closing_references(client: ForgeClientProtocol, pr_url: str) -> set[int]:
    """Issue numbers the forge has linked as closed by the PR."""
    return {number async for number in client.iter_closing_issue_references(pr_url)}


def merge_issue_evidence(*sources: Iterable[int]) -> set[int]:
    """Union of issue numbers from every source."""
    merged: set[int] = set()
    for source in sources:
        merged.update(source)
    return merged


async def issues_closed_by(
    client: ForgeClientProtocol, pr_url: str, pr_body: str | None
) -> set[int]:
    """All issues closed by a pull request.

    Args:
        client: Forge client used for the closing references query
        pr_url: The PR's html_url
        pr_body: The PR description, possibly None

    Returns:
        De-duplicated issue numbers
    """
    linked = await issues_from_closing_references(client, pr_url)
    mentioned = issues_from_body(pr_body)
    issues = merge_issue_evidence(linked, mentioned)

    logger.debug(
        "issues_attributed",
        pr_url=pr_url,
        linked=sorted(linked),
        mentioned=sorted(mentioned),
    )
    return issues
