"""Tests for tag parsing and previous-tag resolution.

Stable tags resolve along the stable lineage by semantic version;
prereleases resolve by date. These are pure functions, so no mocking.

Run with: pytest tests/test_tags.py -v
"""

from __future__ import annotations

import pytest
import structlog

from release_notifier.errors import NoPreviousTagFound, TagNotFound
from release_notifier.tags import (
    build_tag,
    clean_tag_name,
    in_package_namespace,
    parse_version,
    resolve_previous_tag,
)

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    """Tests for tag name normalisation and classification."""

    def test_leading_v_is_optional(self) -> None:
        assert str(parse_version("v1.2.3")) == "1.2.3"
        assert str(parse_version("1.2.3")) == "1.2.3"

    def test_package_namespace_is_stripped(self) -> None:
        assert str(parse_version("remix@2.0.0-pre.1", "remix")) == "2.0.0-pre.1"
        assert clean_tag_name("refs/tags/remix@2.0.0", "remix") == "2.0.0"

    def test_non_semver_names_are_rejected(self, at_day) -> None:
        assert parse_version("latest") is None
        assert build_tag("release-2024", at_day(1)) is None

    def test_prerelease_classification(self, make_tag) -> None:
        assert make_tag("v1.0.0-pre.3", 1).is_prerelease
        assert make_tag("v0.0.0-nightly-abc1234-20240101", 1).is_prerelease
        assert not make_tag("v1.0.0", 1).is_prerelease

    def test_nightly_detection(self, make_tag) -> None:
        assert make_tag("v0.0.0-nightly-abc1234-20240101", 1).is_nightly
        assert not make_tag("v1.0.0-pre.0", 1).is_nightly

    def test_package_namespace_filter(self) -> None:
        assert in_package_namespace("remix@1.0.0", "remix")
        assert in_package_namespace("v0.0.0-nightly-abc", "remix")
        assert not in_package_namespace("other@1.0.0", "remix")
        assert not in_package_namespace("v1.0.0", "remix")
        assert in_package_namespace("anything", None)


# ---------------------------------------------------------------------------
# Stable Resolution
# ---------------------------------------------------------------------------


class TestStableResolution:
    """Stable tags compare against the next lower stable version."""

    def test_skips_prereleases(self, make_tag) -> None:
        """v1.1.0 resolves to v1.0.0 even with a prerelease in between."""
        tags = [
            make_tag("v1.0.0", 1),
            make_tag("v1.1.0-pre.0", 5),
            make_tag("v1.1.0", 10),
        ]
        pair = resolve_previous_tag("v1.1.0", tags)
        assert pair.previous.name == "v1.0.0"
        assert pair.current.name == "v1.1.0"

    def test_version_order_beats_date_order(self, make_tag) -> None:
        """A patch for an old major published late still follows its own line."""
        tags = [
            make_tag("v1.4.0", 1),
            make_tag("v2.0.0", 5),
            make_tag("v1.4.1", 8),
        ]
        assert resolve_previous_tag("v1.4.1", tags).previous.name == "v1.4.0"
        assert resolve_previous_tag("v2.0.0", tags).previous.name == "v1.4.1"

    def test_previous_is_strictly_lower_and_stable(self, make_tag) -> None:
        tags = [
            make_tag("v0.9.0", 1),
            make_tag("v1.0.0-pre.1", 2),
            make_tag("v1.0.0", 3),
            make_tag("1.0.0", 4),
            make_tag("v1.0.1-pre.0", 5),
        ]
        pair = resolve_previous_tag("v1.0.0", tags)
        assert not pair.previous.is_prerelease
        assert pair.previous.version < pair.current.version
        assert pair.previous.name == "v0.9.0"

    def test_oldest_stable_has_no_previous(self, make_tag) -> None:
        tags = [make_tag("v0.1.0-pre.0", 0), make_tag("v0.1.0", 1)]
        with pytest.raises(NoPreviousTagFound) as exc_info:
            resolve_previous_tag("v0.1.0", tags)
        assert exc_info.value.stable is True
        assert exc_info.value.tag_name == "v0.1.0"

    def test_out_of_order_history_is_logged(self, make_tag) -> None:
        """v2.0.0 tagged before v1.4.1 yields a window that runs backwards."""
        tags = [
            make_tag("v1.4.0", 1),
            make_tag("v2.0.0", 5),
            make_tag("v1.4.1", 8),
        ]
        with structlog.testing.capture_logs() as logs:
            pair = resolve_previous_tag("v2.0.0", tags)

        assert not pair.is_consistent
        assert pair.window.is_empty
        assert any(entry["event"] == "inconsistent_tag_history" for entry in logs)


# ---------------------------------------------------------------------------
# Prerelease Resolution
# ---------------------------------------------------------------------------


class TestPrereleaseResolution:
    """Prerelease and nightly tags compare against the previous tag by date."""

    def test_previous_by_date_any_class(self, make_tag) -> None:
        tags = [
            make_tag("v1.0.0", 1),
            make_tag("v1.1.0-pre.0", 5),
            make_tag("v1.1.0-pre.1", 7),
        ]
        assert resolve_previous_tag("v1.1.0-pre.1", tags).previous.name == "v1.1.0-pre.0"
        assert resolve_previous_tag("v1.1.0-pre.0", tags).previous.name == "v1.0.0"

    def test_nightly_follows_chronology(self, make_tag) -> None:
        tags = [
            make_tag("v0.0.0-nightly-aaa", 1),
            make_tag("v2.0.0", 2),
            make_tag("v0.0.0-nightly-bbb", 3),
        ]
        pair = resolve_previous_tag("v0.0.0-nightly-bbb", tags)
        assert pair.previous.name == "v2.0.0"
        assert pair.is_consistent

    def test_input_order_does_not_matter(self, make_tag) -> None:
        tags = [
            make_tag("v1.1.0-pre.1", 7),
            make_tag("v1.0.0", 1),
            make_tag("v1.1.0-pre.0", 5),
        ]
        assert resolve_previous_tag("v1.1.0-pre.1", tags).previous.name == "v1.1.0-pre.0"

    def test_oldest_tag_has_no_previous(self, make_tag) -> None:
        tags = [make_tag("v1.0.0-pre.0", 1), make_tag("v1.0.0", 2)]
        with pytest.raises(NoPreviousTagFound) as exc_info:
            resolve_previous_tag("v1.0.0-pre.0", tags)
        assert exc_info.value.stable is False


class TestMissingTag:
    def test_unknown_tag_raises(self, make_tag) -> None:
        with pytest.raises(TagNotFound) as exc_info:
            resolve_previous_tag("v9.9.9", [make_tag("v1.0.0", 1)])
        assert "v9.9.9" in str(exc_info.value)

    def test_empty_history_raises(self) -> None:
        with pytest.raises(TagNotFound):
            resolve_previous_tag("v1.0.0", [])
