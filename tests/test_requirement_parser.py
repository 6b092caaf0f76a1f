"""Tests for requirement shorthand parsing and the plan models."""

import pytest

from modulefast.errors import InvalidRequirementError, InvariantViolationError
from modulefast.versioning.models import InstallationPlan, Requirement, ResolvedModule
from modulefast.versioning.parser import parse_requirement, parse_requirements, tokenize_rightmost_colon
from modulefast.versioning.ranges import VersionRange, parse_range
from modulefast.versioning.version import parse_version as V


class TestTokenizer:
    """Tests for the rightmost-colon rule."""

    def test_no_colon(self):
        assert tokenize_rightmost_colon("Pester") == ("Pester", None)

    def test_rightmost_colon(self):
        assert tokenize_rightmost_colon("Az.Accounts:[1.0,2.0)") == ("Az.Accounts", "[1.0,2.0)")

    def test_empty_range_part(self):
        assert tokenize_rightmost_colon("Pester: ") == ("Pester", None)


class TestParseRequirement:
    """Tests for parse_requirement."""

    def test_name_only(self):
        """A bare name accepts any version."""
        req = parse_requirement("PSReadLine")
        assert req.name == "PSReadLine"
        assert req.version_range.is_unbounded
        assert not req.prerelease

    @pytest.mark.parametrize("token,expected", [
        ("Pester=5.0.0", parse_range("[5.0.0]")),
        ("Pester@5.0.0", parse_range("[5.0.0]")),
        ("Pester>5.0", parse_range("(5.0,)")),
        ("Pester>=5.0", parse_range("[5.0,)")),
        ("Pester<6.0", parse_range("(,6.0)")),
        ("Pester<=6.0", parse_range("(,6.0]")),
        ("Pester:[5.0,6.0)", parse_range("[5.0,6.0)")),
        ("Pester@latest", VersionRange()),
    ])
    def test_shorthand_forms(self, token, expected):
        """Each shorthand form maps to the equivalent range."""
        req = parse_requirement(token)
        assert req.name == "Pester"
        assert req.version_range == expected

    def test_prerelease_marker(self):
        """A leading or trailing ! opts in to prereleases."""
        assert parse_requirement("!Pester").prerelease
        assert parse_requirement("Pester>=5.0!").prerelease
        assert parse_requirement("!Pester>=5.0").version_range == parse_range(">=5.0")

    def test_guid(self):
        """GUIDs are normalized to lower case."""
        req = parse_requirement("Pester", guid="A699DEA5-2C73-4616-A270-1F7ABB777E71")
        assert req.guid == "a699dea5-2c73-4616-a270-1f7abb777e71"

    @pytest.mark.parametrize("token", ["", "   ", "Pester>=", "Pester:[2.0,1.0]", ">=1.0", "Pester@1.x"])
    def test_invalid(self, token):
        """Malformed tokens raise InvalidRequirementError."""
        with pytest.raises(InvalidRequirementError):
            parse_requirement(token)

    def test_parse_many_skips_comments(self):
        """Blank lines and comments are ignored."""
        reqs = parse_requirements(["Pester", "", "# pinned tools", "  PSScriptAnalyzer>=1.20"])
        assert [r.name for r in reqs] == ["Pester", "PSScriptAnalyzer"]


class TestRequirement:
    """Tests for the Requirement model."""

    def test_structural_equality(self):
        """Requirements compare by name, GUID and range; prerelease opt-in is ignored."""
        a = Requirement("Pester", parse_range(">=5.0"))
        b = Requirement("Pester", parse_range(">=5.0"), prerelease=True)
        assert a == b
        assert hash(a) == hash(b)
        assert a != Requirement("Pester", parse_range(">=5.1"))

    def test_empty_name_rejected(self):
        with pytest.raises(InvalidRequirementError):
            Requirement("  ")

    @pytest.mark.parametrize("token", [
        "Pester",
        "Pester@5.0.0",
        "Pester>=5.0",
        "Pester>5.0",
        "Pester<6.0",
        "Pester<=6.0",
        "Pester:[5.0, 6.0)",
        "!Pester>=5.0",
    ])
    def test_renders_parseable_shorthand(self, token):
        """str() produces shorthand that parses back to the same requirement."""
        req = parse_requirement(token)
        again = parse_requirement(str(req))
        assert again == req
        assert again.prerelease == req.prerelease

    def test_prerelease_bound_allows_prerelease(self):
        assert parse_requirement("Pester>=6.0.0-beta").allows_prerelease
        assert not parse_requirement("Pester>=6.0.0").allows_prerelease


class TestInstallationPlan:
    """Tests for InstallationPlan."""

    def _module(self, name, version):
        return ResolvedModule(name=name, version=V(version), location=f"https://example.test/{name}")

    def test_case_insensitive_dedup(self):
        """A name can be planned only once, ignoring case."""
        plan = InstallationPlan([self._module("Pester", "5.0.0")])
        with pytest.raises(InvariantViolationError):
            plan.add(self._module("pester", "5.1.0"))
        assert "PESTER" in plan
        assert plan.get("pester").version == V("5.0.0")
        assert len(plan) == 1

    def test_lock_mapping(self):
        """The lock mapping exposes Name -> version strings in insertion order."""
        plan = InstallationPlan([self._module("B", "1.2"), self._module("A", "2.0.0.1")])
        assert plan.to_lock_mapping() == {"B": "1.2", "A": "2.0.0.1"}
        assert [m.name for m in plan] == ["B", "A"]

    def test_attach_path(self, tmp_path):
        """installed_path is set through attach_path."""
        module = self._module("Pester", "5.0.0")
        assert module.installed_path is None
        module.attach_path(tmp_path)
        assert module.installed_path == tmp_path
        assert str(module) == "Pester@5.0.0"
        assert module.folder_name == "5.0.0"
