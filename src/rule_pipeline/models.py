"""Pydantic models for normalized detection rules.

A parsed rule is either a ``StandardRule`` (carries its own query) or a
``MachineLearningRule`` (backed by one or more anomaly detection jobs). Both
serialize to the same camelCase search document via ``to_document()``.
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RuleLanguage(str, Enum):
    """Query languages accepted in the rules index."""

    KUERY = "kuery"
    LUCENE = "lucene"
    EQL = "eql"


class RuleSeverity(str, Enum):
    """Rule severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ThreatReference(BaseModel):
    """A MITRE ATT&CK tactic, technique or subtechnique reference."""

    id: str = ""
    name: str = ""
    reference: str = ""


class ThreatTechnique(ThreatReference):
    subtechnique: list[ThreatReference] = Field(default_factory=list)


class ThreatInfo(BaseModel):
    """One ``[[rule.threat]]`` entry."""

    framework: str = "MITRE ATT&CK"
    tactic: ThreatReference | None = None
    technique: list[ThreatTechnique] = Field(default_factory=list)


class BaseDetectionRule(BaseModel):
    """Fields shared by every detection rule document."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    id: str = Field(min_length=1, description="Rule file stem, stable across syncs")
    name: str = Field(min_length=1)
    description: str | None = None
    query: str = ""
    language: RuleLanguage | None = None
    rule_type: str | None = Field(default=None, alias="type")
    severity: RuleSeverity | None = None
    risk_score: int = 0
    version: int = 1
    tags: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    false_positives: list[str] = Field(default_factory=list)
    threat: list[ThreatInfo] = Field(default_factory=list)
    required_fields: list[str] = Field(default_factory=list)
    author: list[str] = Field(default_factory=list)
    integration: list[str] = Field(default_factory=list)
    index: list[str] = Field(default_factory=list)
    maturity: str | None = None
    creation_date: str | None = None
    updated_date: str | None = None
    license: str | None = None
    rule_id: str | None = None
    note: str | None = None
    from_: str | None = Field(default=None, alias="from")
    timestamp_override: str | None = None
    rule_source: str = Field(description="Originating rule filename")
    last_updated: str = Field(description="Ingestion timestamp (UTC, ISO-8601)")
    enabled: bool = True

    def to_document(self) -> dict:
        """Serialize to the search document stored under ``id``."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"kind"})


class StandardRule(BaseDetectionRule):
    """A query-based rule (kuery, lucene or eql)."""

    kind: Literal["standard"] = "standard"
    query: str = Field(min_length=1)


class MachineLearningRule(BaseDetectionRule):
    """A rule that alerts on anomalies from machine learning jobs.

    The job ids are not stored as a document field; the synthesized query
    (``ML Job: <id>``) references them instead.
    """

    kind: Literal["machine_learning"] = "machine_learning"
    rule_type: str | None = Field(default="machine_learning", alias="type")
    machine_learning_job_ids: list[str] = Field(min_length=1, exclude=True)
    anomaly_threshold: int | None = None


DetectionRule = Annotated[
    Union[StandardRule, MachineLearningRule],
    Field(discriminator="kind"),
]
