"""Post release comments on pull requests and the issues they close.

For every PR in the release:
- comment that the release includes it
- remove the awaiting-release label if the PR has it

For every issue those PRs close, once per run no matter how many PRs
reference it:
- comment that the release involves it
- close it, if a PR referencing it was awaiting release and this is not a
  nightly (nightlies never resolve issues)

All forge writes are independent and run concurrently. A failed write is
logged and collected; it never stops the other writes. The caller decides
what to do with the collected failures.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from release_notifier.attribution import issues_closed_by, issues_from_body
from release_notifier.errors import ForgeRequestError
from release_notifier.forge.github import ForgeClientProtocol
from release_notifier.logging_config import get_logger
from release_notifier.schemas import DispatchFailure, PullRequest

logger = get_logger(__name__)

PR_COMMENT_TEMPLATE = (
    "🤖 Hello there,\n\n"
    "We just published version `{version}` which includes this pull request. "
    "If you'd like to take it for a test run please try it out and let us know what you think!\n\n"
    "Thanks!"
)

ISSUE_COMMENT_TEMPLATE = (
    "🤖 Hello there,\n\n"
    "We just published version `{version}` which involves this issue. "
    "If you'd like to take it for a test run please try it out and let us know what you think!\n\n"
    "Thanks!"
)


def pull_request_comment(version: str) -> str:
    return PR_COMMENT_TEMPLATE.format(version=version)


def issue_comment(version: str) -> str:
    return ISSUE_COMMENT_TEMPLATE.format(version=version)


@dataclass
class DispatchReport:
    """What one ``notify`` call did.

    Attributes:
        prs_commented: PRs that received the release comment
        labels_removed: PRs whose awaiting-release label was removed
        issues_commented: Issues that received the release comment
        issues_closed: Issues that were closed
        failures: Writes (and closing-reference lookups) that failed
    """

    prs_commented: list[int] = field(default_factory=list)
    labels_removed: list[int] = field(default_factory=list)
    issues_commented: list[int] = field(default_factory=list)
    issues_closed: list[int] = field(default_factory=list)
    failures: list[DispatchFailure] = field(default_factory=list)


@dataclass
class _Operation:
    action: str
    kind: str
    target: int
    call: Callable[[], Awaitable[None]]
    done: list[int]


class NotificationDispatcher:
    """Comments on, unlabels and closes the PRs and issues of a release.

    The set of issues already notified lives as long as the dispatcher, so
    one dispatcher per run guarantees one comment per issue per run.

    Usage:
        dispatcher = NotificationDispatcher(client, "myorg/app", is_nightly=False)
        report = await dispatcher.notify(prs, "v1.2.0")
    """

    def __init__(
        self,
        client: ForgeClientProtocol,
        repo: str,
        *,
        is_nightly: bool,
        awaiting_release_label: str = "awaiting release",
        dry_run: bool = False,
    ) -> None:
        self.client = client
        self.repo = repo
        self.is_nightly = is_nightly
        self.awaiting_release_label = awaiting_release_label
        self.dry_run = dry_run
        self.notified_issues: set[int] = set()

    def claim_issue(self, number: int) -> bool:
        """Mark an issue as notified; False if it already was.

        The membership test and the insert happen with no await in between,
        so two concurrent callers can never both claim the same issue.
        """
        if number in self.notified_issues:
            return False
        self.notified_issues.add(number)
        return True

    async def notify(self, prs: Sequence[PullRequest], version: str) -> DispatchReport:
        """Comment on every PR and every issue it closes.

        Args:
            prs: Pull requests shipped in the release
            version: Version string shown in the comments

        Returns:
            A report of what was done and what failed
        """
        report = DispatchReport()
        attributed = await asyncio.gather(*(self._attribute(pr, report) for pr in prs))

        operations: list[_Operation] = []
        to_close: set[int] = set()
        claimed: list[int] = []

        for pr, issues in zip(prs, attributed):
            awaiting = pr.has_label(self.awaiting_release_label)
            operations.append(self._comment(pr.number, "pr", pull_request_comment(version), report))
            if awaiting:
                operations.append(self._remove_label(pr.number, report))

            for issue in sorted(issues):
                if awaiting and not self.is_nightly:
                    to_close.add(issue)
                if self.claim_issue(issue):
                    claimed.append(issue)
                else:
                    logger.debug("issue_already_notified", issue=issue, pr=pr.number)

        for issue in claimed:
            operations.append(self._comment(issue, "issue", issue_comment(version), report))
            if issue in to_close:
                operations.append(self._close(issue, report))

        results = await asyncio.gather(*(self._attempt(op) for op in operations))
        report.failures.extend(failure for failure in results if failure is not None)

        for done in (
            report.prs_commented,
            report.labels_removed,
            report.issues_commented,
            report.issues_closed,
        ):
            done.sort()
        return report

    # -- internals -----------------------------------------------------------

    async def _attribute(self, pr: PullRequest, report: DispatchReport) -> set[int]:
        try:
            return await issues_closed_by(self.client, pr.html_url, pr.body)
        except ForgeRequestError as exc:
            # keep going with what the description says; the failure still fails the run
            logger.error("closing_references_failed", pr=pr.number, error=str(exc))
            report.failures.append(
                DispatchFailure(action="closing_references", target=pr.number, error=str(exc))
            )
            return issues_from_body(pr.body)

    def _comment(self, number: int, kind: str, body: str, report: DispatchReport) -> _Operation:
        done = report.prs_commented if kind == "pr" else report.issues_commented
        return _Operation(
            action="comment",
            kind=kind,
            target=number,
            call=lambda: self.client.create_comment(self.repo, number, body),
            done=done,
        )

    def _remove_label(self, number: int, report: DispatchReport) -> _Operation:
        return _Operation(
            action="remove_label",
            kind="pr",
            target=number,
            call=lambda: self.client.remove_label(self.repo, number, self.awaiting_release_label),
            done=report.labels_removed,
        )

    def _close(self, number: int, report: DispatchReport) -> _Operation:
        return _Operation(
            action="close",
            kind="issue",
            target=number,
            call=lambda: self.client.close_issue(self.repo, number),
            done=report.issues_closed,
        )

    async def _attempt(self, op: _Operation) -> DispatchFailure | None:
        if self.dry_run:
            logger.info("dry_run_skip", action=op.action, kind=op.kind, target=op.target)
            op.done.append(op.target)
            return None

        try:
            await op.call()
        except ForgeRequestError as exc:
            logger.error(
                "dispatch_failed",
                action=op.action,
                kind=op.kind,
                target=op.target,
                status=exc.status,
                error=str(exc),
            )
            return DispatchFailure(action=op.action, target=op.target, error=str(exc))

        logger.info("dispatch_done", action=op.action, kind=op.kind, target=op.target)
        op.done.append(op.target)
        return None
