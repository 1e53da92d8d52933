"""Shared fixtures: tag/PR factories and a baseline configuration."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from release_notifier.config import NotifierConfig
from release_notifier.schemas import PullRequest, Tag
from release_notifier.tags import build_tag

DAY_ZERO = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def day(n: float) -> datetime:
    """Timestamp ``n`` days after DAY_ZERO."""
    return DAY_ZERO + timedelta(days=n)


@pytest.fixture
def at_day() -> Callable[[float], datetime]:
    return day


@pytest.fixture
def make_tag() -> Callable[..., Tag]:
    """Build a Tag dated ``n`` days after DAY_ZERO."""

    def factory(name: str, on_day: float, package_name: str | None = None) -> Tag:
        tag = build_tag(name, day(on_day), package_name)
        assert tag is not None, f"{name} is not a valid tag"
        return tag

    return factory


@pytest.fixture
def make_pr() -> Callable[..., PullRequest]:
    """Build a merged PullRequest; ``merged`` and ``updated`` are day offsets."""

    def factory(
        number: int,
        merged: float | None,
        *,
        updated: float | None = None,
        body: str | None = None,
        labels: list[str] | None = None,
        base: str = "main",
        title: str = "",
    ) -> PullRequest:
        merged_at = day(merged) if merged is not None else None
        if updated is None:
            updated_at = merged_at or day(0)
        else:
            updated_at = day(updated)
        return PullRequest(
            number=number,
            html_url=f"https://github.com/myorg/app/pull/{number}",
            title=title or f"PR {number}",
            body=body,
            merged_at=merged_at,
            updated_at=updated_at,
            base_branch=base,
            labels=labels or [],
        )

    return factory


@pytest.fixture
def config() -> NotifierConfig:
    return NotifierConfig(
        owner="myorg",
        repo="app",
        token="ghp_test",
        tag="v1.1.0",
        path_prefixes=["packages/"],
        default_branch="main",
        nightly_branch="dev",
    )
