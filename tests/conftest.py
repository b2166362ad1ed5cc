"""
Global pytest fixtures for the detection rule sync service.
"""

import pytest
from pathlib import Path
from typing import Dict, List

from helpers import FakeRuleSource, FakeRuleStore, rule_files


# ============================================================
# Configuration Constants
# ============================================================

PROJECT_ROOT = Path(__file__).parent.parent
FIXTURES_DIR = Path(__file__).parent / "fixtures"
RULE_FIXTURES_DIR = FIXTURES_DIR / "rules"


# ============================================================
# Pytest Configuration Hooks
# ============================================================

def pytest_collection_modifyitems(config, items):
    """Apply markers based on test location."""
    for item in items:
        path_str = str(item.fspath)

        if "/unit/" in path_str:
            item.add_marker(pytest.mark.unit)
        elif "/endpoints/" in path_str:
            item.add_marker(pytest.mark.api)


# ============================================================
# Rule File Fixtures
# ============================================================

@pytest.fixture(scope="session")
def rule_fixtures_dir() -> Path:
    """Return the sample rule files directory."""
    return RULE_FIXTURES_DIR


@pytest.fixture(scope="session")
def load_rule_fixture():
    """Factory fixture returning (text, filename) for a sample rule file."""
    def _load(filename: str):
        return (RULE_FIXTURES_DIR / filename).read_text(encoding="utf-8"), filename
    return _load


# ============================================================
# Sync Fixtures
# ============================================================

@pytest.fixture
def sleep_calls() -> List[float]:
    """Delays requested by the orchestrator between batches."""
    return []


@pytest.fixture
def fake_sleep(sleep_calls):
    """Records pacing delays instead of sleeping."""
    async def _sleep(delay: float) -> None:
        sleep_calls.append(delay)
    return _sleep


@pytest.fixture
def twelve_rule_files() -> Dict[str, str]:
    return rule_files(12)


@pytest.fixture
def fake_store() -> FakeRuleStore:
    return FakeRuleStore()


@pytest.fixture
def fake_source(twelve_rule_files) -> FakeRuleSource:
    return FakeRuleSource(twelve_rule_files)
