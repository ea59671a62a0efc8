"""Tests for platform rule evaluation."""

from craftlaunch.versions.models import VersionLibraryRules
from craftlaunch.versions.rules import allowed


def rules(*items):
    return [VersionLibraryRules(**item) for item in items]


def test_no_rules_allows():
    assert allowed([], "linux") is True
    assert allowed(None, "linux") is True


def test_last_matching_rule_wins():
    declared = rules({"action": "allow"}, {"action": "disallow", "os": {"name": "linux"}})
    assert allowed(declared, "linux") is False
    assert allowed(declared, "windows") is True


def test_no_matching_rule_disallows():
    declared = rules({"action": "allow", "os": {"name": "osx"}})
    assert allowed(declared, "linux") is False
    assert allowed(declared, "osx") is True


def test_later_allow_overrides_earlier_disallow():
    declared = rules({"action": "disallow", "os": {"name": "linux"}}, {"action": "allow"})
    assert allowed(declared, "linux") is True


def test_arch_constraint():
    declared = rules({"action": "allow", "os": {"name": "windows", "arch": "x86"}})
    assert allowed(declared, "windows", arch="x86") is True
    assert allowed(declared, "windows", arch="x86_64") is False


def test_features_default_to_disabled():
    declared = rules({"action": "allow", "features": {"is_demo_user": True}})
    assert allowed(declared, "linux") is False
    assert allowed(declared, "linux", features={"is_demo_user": True}) is True


def test_feature_expected_false_matches_when_disabled():
    declared = rules({"action": "allow", "features": {"has_custom_resolution": False}})
    assert allowed(declared, "linux") is True


def test_os_version_pattern():
    declared = rules({"action": "allow"},
                     {"action": "disallow", "os": {"name": "osx", "version": "^10\\.5\\.\\d$"}})
    assert allowed(declared, "osx", os_version="10.5.8") is False
    assert allowed(declared, "osx", os_version="14.4.1") is True
    assert allowed(declared, "windows", os_version="10.5.8") is True
