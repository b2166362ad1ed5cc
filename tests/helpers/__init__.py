"""Test helper utilities for the rule sync service."""

from .fakes import FakeRuleSource, FakeRuleStore, rule_files, rule_toml

__all__ = [
    "FakeRuleSource",
    "FakeRuleStore",
    "rule_files",
    "rule_toml",
]
