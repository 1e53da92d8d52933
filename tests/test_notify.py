"""Tests for the notification dispatcher.

These use MockForgeClient, which records every write, so assertions are
about what would have been posted to the forge.

Run with: pytest tests/test_notify.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from release_notifier.errors import ForgeRequestError
from release_notifier.forge.github import MockForgeClient
from release_notifier.notify import (
    NotificationDispatcher,
    issue_comment,
    pull_request_comment,
)

REPO = "myorg/app"
LABEL = "awaiting release"


def dispatcher_for(client: MockForgeClient, *, is_nightly: bool = False, dry_run: bool = False):
    return NotificationDispatcher(
        client,
        REPO,
        is_nightly=is_nightly,
        awaiting_release_label=LABEL,
        dry_run=dry_run,
    )


class TestTemplates:
    def test_comments_mention_version(self) -> None:
        assert "`v1.2.0`" in pull_request_comment("v1.2.0")
        assert "includes this pull request" in pull_request_comment("v1.2.0")
        assert "`v1.2.0`" in issue_comment("v1.2.0")
        assert "involves this issue" in issue_comment("v1.2.0")


class TestPullRequestComments:
    @pytest.mark.asyncio
    async def test_every_pr_gets_a_comment(self, make_pr) -> None:
        client = MockForgeClient()
        report = await dispatcher_for(client).notify([make_pr(1, 3), make_pr(2, 4)], "v1.1.0")

        assert client.commented_on(1) == [pull_request_comment("v1.1.0")]
        assert client.commented_on(2) == [pull_request_comment("v1.1.0")]
        assert report.prs_commented == [1, 2]
        assert report.failures == []

    @pytest.mark.asyncio
    async def test_awaiting_label_is_removed(self, make_pr) -> None:
        client = MockForgeClient()
        prs = [make_pr(1, 3, labels=[LABEL, "bug"]), make_pr(2, 4, labels=["bug"])]
        report = await dispatcher_for(client).notify(prs, "v1.1.0")

        assert client.removed_labels == [(1, LABEL)]
        assert report.labels_removed == [1]


class TestIssueNotifications:
    @pytest.mark.asyncio
    async def test_shared_issue_commented_once(self, make_pr) -> None:
        """Two PRs closing #42 produce exactly one comment on #42."""
        client = MockForgeClient()
        prs = [make_pr(1, 3, body="Fixes #42"), make_pr(2, 4, body="closes #42, fixes #43")]
        report = await dispatcher_for(client).notify(prs, "v1.1.0")

        assert client.commented_on(42) == [issue_comment("v1.1.0")]
        assert len(client.commented_on(43)) == 1
        assert report.issues_commented == [42, 43]

    @pytest.mark.asyncio
    async def test_structured_and_body_references_both_count(self, make_pr) -> None:
        pr = make_pr(7, 3, body="Resolves #5")
        client = MockForgeClient(closing_references={pr.html_url: [4, 5]})
        report = await dispatcher_for(client).notify([pr], "v1.1.0")
        assert report.issues_commented == [4, 5]

    @pytest.mark.asyncio
    async def test_dedup_spans_notify_calls(self, make_pr) -> None:
        client = MockForgeClient()
        dispatcher = dispatcher_for(client)
        await dispatcher.notify([make_pr(1, 3, body="Fixes #9")], "v1.1.0")
        await dispatcher.notify([make_pr(2, 4, body="Fixes #9")], "v1.1.0")
        assert len(client.commented_on(9)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_claims_are_exclusive(self) -> None:
        dispatcher = dispatcher_for(MockForgeClient())

        async def claim() -> bool:
            await asyncio.sleep(0)
            return dispatcher.claim_issue(42)

        results = await asyncio.gather(*(claim() for _ in range(20)))
        assert results.count(True) == 1


class TestClosingPolicy:
    @pytest.mark.asyncio
    async def test_stable_release_closes_awaiting_issues(self, make_pr) -> None:
        client = MockForgeClient()
        prs = [make_pr(1, 3, body="Fixes #5", labels=[LABEL])]
        report = await dispatcher_for(client, is_nightly=False).notify(prs, "v1.1.0")

        assert client.commented_on(5) == [issue_comment("v1.1.0")]
        assert client.closed_issues == [5]
        assert report.issues_closed == [5]

    @pytest.mark.asyncio
    async def test_nightly_never_closes(self, make_pr) -> None:
        client = MockForgeClient()
        prs = [make_pr(1, 3, body="Fixes #5", labels=[LABEL])]
        await dispatcher_for(client, is_nightly=True).notify(prs, "v0.0.0-nightly-abc")

        assert len(client.commented_on(5)) == 1
        assert client.closed_issues == []

    @pytest.mark.asyncio
    async def test_unlabelled_pr_does_not_close(self, make_pr) -> None:
        client = MockForgeClient()
        await dispatcher_for(client).notify([make_pr(1, 3, body="Fixes #5")], "v1.1.0")
        assert client.closed_issues == []

    @pytest.mark.asyncio
    async def test_any_awaiting_pr_closes_shared_issue(self, make_pr) -> None:
        """#42 is closed when any PR referencing it was awaiting release."""
        client = MockForgeClient()
        prs = [
            make_pr(1, 3, body="Fixes #42"),
            make_pr(2, 4, body="Fixes #42", labels=[LABEL]),
        ]
        await dispatcher_for(client).notify(prs, "v1.1.0")
        assert len(client.commented_on(42)) == 1
        assert client.closed_issues == [42]


class TestFailures:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, make_pr) -> None:
        client = MockForgeClient(fail_on={("comment", 1), ("close", 5)})
        prs = [
            make_pr(1, 3, body="Fixes #5", labels=[LABEL]),
            make_pr(2, 4, body="Fixes #6"),
        ]
        report = await dispatcher_for(client).notify(prs, "v1.1.0")

        assert report.prs_commented == [2]
        assert report.issues_commented == [5, 6]
        assert report.labels_removed == [1]
        assert report.issues_closed == []
        assert sorted((f.action, f.target) for f in report.failures) == [
            ("close", 5),
            ("comment", 1),
        ]

    @pytest.mark.asyncio
    async def test_failed_reference_lookup_falls_back_to_body(self, make_pr) -> None:
        pr = make_pr(1, 3, body="Fixes #5")

        class BrokenReferences(MockForgeClient):
            async def iter_closing_issue_references(self, pr_url):
                raise ForgeRequestError("boom", status=502)
                yield  # pragma: no cover

        client = BrokenReferences()
        report = await dispatcher_for(client).notify([pr], "v1.1.0")

        assert report.issues_commented == [5]
        assert [(f.action, f.target) for f in report.failures] == [("closing_references", 1)]


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, make_pr) -> None:
        client = MockForgeClient()
        prs = [make_pr(1, 3, body="Fixes #5", labels=[LABEL])]
        report = await dispatcher_for(client, dry_run=True).notify(prs, "v1.1.0")

        assert client.comments == []
        assert client.removed_labels == []
        assert client.closed_issues == []
        assert report.prs_commented == [1]
        assert report.issues_closed == [5]
