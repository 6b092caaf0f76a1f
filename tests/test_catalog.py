"""Tests for registration document parsing and catalog entry selection."""

import pytest

from modulefast.errors import InvariantViolationError, RegistryTransportError
from modulefast.registry.catalog import (
    candidate_pages,
    inlined_leaves,
    page_range,
    parse_dependencies,
    parse_leaf,
    select_entry,
)
from modulefast.versioning.parser import parse_requirement
from modulefast.versioning.ranges import parse_range
from modulefast.versioning.version import parse_version as V


def leaf(version, listed=True, deps=None, name="Contoso.Tools"):
    """Build a registration leaf."""
    return {
        "catalogEntry": {
            "id": name,
            "version": version,
            "listed": listed,
            "dependencyGroups": [{"dependencies": [{"id": d, "range": r} for d, r in (deps or {}).items()]}],
        },
        "packageContent": f"https://feed.test/{name.lower()}/{version}.nupkg",
    }


class TestParseLeaf:
    """Tests for catalog entry parsing."""

    def test_dependencies_flattened(self):
        """Dependencies of every group are merged; the first occurrence wins."""
        entry = {
            "id": "Contoso.Tools",
            "dependencyGroups": [
                {"targetFramework": "net472", "dependencies": [{"id": "Contoso.Core", "range": "[1.0, )"}]},
                {"targetFramework": "net8.0", "dependencies": [
                    {"id": "contoso.core", "range": "[2.0, )"},
                    {"id": "Contoso.Logging"},
                ]},
                {"targetFramework": "netstandard2.0"},
            ],
        }
        deps = parse_dependencies(entry)
        assert [d.name for d in deps] == ["Contoso.Core", "Contoso.Logging"]
        assert deps[0].version_range == parse_range("[1.0,)")
        assert deps[1].version_range.is_unbounded

    def test_invalid_dependency_range(self):
        """An unparseable dependency range is a registry data error."""
        entry = {"id": "X", "dependencyGroups": [{"dependencies": [{"id": "Y", "range": "[2.0,1.0]"}]}]}
        with pytest.raises(RegistryTransportError):
            parse_dependencies(entry)

    def test_package_content_fallback(self):
        """packageContent may live on the catalog entry instead of the leaf."""
        item = leaf("1.0.0")
        item["catalogEntry"]["packageContent"] = item.pop("packageContent")
        assert parse_leaf(item, "fallback").content_url.endswith("1.0.0.nupkg")

    def test_missing_package_content(self):
        item = leaf("1.0.0")
        del item["packageContent"]
        with pytest.raises(RegistryTransportError):
            parse_leaf(item, "Contoso.Tools")


class TestSelectEntry:
    """Tests for select_entry."""

    LEAVES = [leaf("1.0.0"), leaf("1.5.0", deps={"Contoso.Core": "1.0"}), leaf("2.0.0-beta"), leaf("1.9.0", listed=False)]

    def test_highest_listed_release(self):
        entry = select_entry(self.LEAVES, parse_requirement("Contoso.Tools"))
        assert entry.version == V("1.5.0")
        assert entry.name == "Contoso.Tools"
        assert [d.name for d in entry.dependencies] == ["Contoso.Core"]

    def test_unlisted_only_when_pinned(self):
        """Unlisted versions are eligible only for an exact pin."""
        assert select_entry(self.LEAVES, parse_requirement("Contoso.Tools>=1.8")) is None
        assert select_entry(self.LEAVES, parse_requirement("Contoso.Tools@1.9.0")).version == V("1.9.0")

    def test_prerelease_opt_in(self):
        assert select_entry(self.LEAVES, parse_requirement("!Contoso.Tools")).version == V("2.0.0-beta")

    def test_unparseable_versions_skipped(self):
        leaves = [leaf("not-a-version"), leaf("1.0.0"), {"catalogEntry": None}]
        assert select_entry(leaves, parse_requirement("Contoso.Tools")).version == V("1.0.0")

    def test_duplicate_versions(self):
        """Two leaves for the selected version are an invariant violation."""
        with pytest.raises(InvariantViolationError):
            select_entry([leaf("1.0.0"), leaf("1.0.0")], parse_requirement("Contoso.Tools"))


class TestPages:
    """Tests for paged registration indexes."""

    INDEX = {
        "items": [
            {"@id": "https://feed.test/p0", "lower": "0.1.0", "upper": "0.9.0"},
            {"@id": "https://feed.test/p1", "lower": "1.0.0", "upper": "1.9.0"},
            {"@id": "https://feed.test/p2", "lower": "2.0.0", "upper": "2.5.0"},
            {"@id": "https://feed.test/inline", "lower": "3.0.0", "upper": "3.0.0", "items": [leaf("3.0.0")]},
        ]
    }

    def test_inlined_leaves(self):
        assert [item["catalogEntry"]["version"] for item in inlined_leaves(self.INDEX)] == ["3.0.0"]

    def test_candidate_pages_highest_first(self):
        """Only overlapping pages without inlined leaves are returned, highest first."""
        pages = candidate_pages(self.INDEX, parse_range("[0.5,2.1)"))
        assert [p["@id"] for p in pages] == ["https://feed.test/p2", "https://feed.test/p1", "https://feed.test/p0"]
        assert candidate_pages(self.INDEX, parse_range(">=2.6")) == []

    def test_page_range(self):
        r = page_range({"lower": "1.0.0", "upper": "1.9.0"})
        assert r.min == V("1.0.0") and r.max == V("1.9.0")
        assert page_range({}).is_unbounded
