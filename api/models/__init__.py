from src.rule_pipeline.models import (
    DetectionRule,
    MachineLearningRule,
    RuleLanguage,
    RuleSeverity,
    StandardRule,
    ThreatInfo,
)
from api.models.sync import (
    CurrentSync,
    FileOutcome,
    RunStatus,
    SyncRequest,
    SyncStarted,
    SyncState,
    SyncStats,
    SyncStatus,
)

__all__ = [
    "DetectionRule", "StandardRule", "MachineLearningRule",
    "RuleLanguage", "RuleSeverity", "ThreatInfo",
    "CurrentSync", "FileOutcome", "RunStatus", "SyncRequest",
    "SyncStarted", "SyncState", "SyncStats", "SyncStatus",
]
