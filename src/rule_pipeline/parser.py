"""Parse detection rule TOML files into DetectionRule models.

Only the subset of TOML that rule files actually use is understood:

    [metadata]                       creation/update dates, maturity, integration
    [rule]                           the rule body
    [[rule.threat]] / [rule.threat.tactic] / [[rule.threat.technique]] ...
    [[rule.required_fields]]
    key = "scalar" | 'scalar' | bare | ["array", "items"]
    key = \"\"\" ... \"\"\"  or  key = ''' ... '''   (multiline strings)

The parser is a single-pass line state machine. Malformed input never raises;
it produces a ``RuleRejection`` instead.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath

from pydantic import ValidationError

from src.rule_pipeline.fields import extract_fields
from src.rule_pipeline.models import (
    DetectionRule,
    MachineLearningRule,
    RuleLanguage,
    RuleSeverity,
    StandardRule,
    ThreatInfo,
)

logger = logging.getLogger(__name__)

METADATA_MARKER = "[metadata]"
RULE_MARKER = "[rule]"
MULTILINE_DELIMITERS = ('"""', "'''")
CAPTURE_FIELDS = ("query", "description", "note")
ML_RULE_TYPE = "machine_learning"
ML_QUERY_PREFIX = "ML Job: "

_SLASH_DATE = re.compile(r"^\d{4}/\d{2}/\d{2}$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_QUOTES = re.compile(r"^[\"']|[\"']$")
_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")
_CAPTURE_KEY = re.compile(r"^\s*(" + "|".join(CAPTURE_FIELDS) + r")\s*=")
_ASSIGNED_KEY = re.compile(r"^\s*([\w.-]+)\s*=")

# [rule] keys copied verbatim as scalars
_RULE_SCALARS = {
    "name": "name",
    "type": "rule_type",
    "license": "license",
    "rule_id": "rule_id",
    "from": "from_",
    "timestamp_override": "timestamp_override",
}
_RULE_TEXT = {"description", "query", "note"}
_RULE_ARRAYS = {
    "tags": "tags",
    "references": "references",
    "author": "author",
    "false_positives": "false_positives",
    "index": "index",
}


class ParserState(Enum):
    ROOT = "root"
    METADATA = "metadata"
    RULE = "rule"
    MULTILINE = "multiline"
    ARRAY = "array"


@dataclass(frozen=True)
class RuleRejection:
    """A rule file that could not be turned into a DetectionRule."""

    filename: str
    reason: str


def unquote(value: str) -> str:
    """Strip one surrounding single or double quote from ``value``."""
    return _QUOTES.sub("", value.strip())


def parse_array(value: str) -> list[str]:
    """Parse ``["a", "b"]`` style values; a bare scalar becomes a one-item list."""
    value = value.strip()
    if not value:
        return []
    if "[" in value and "]" in value:
        content = value[value.index("[") + 1:value.rindex("]")]
        items = (unquote(part).strip() for part in content.split(","))
        return [item for item in items if item]
    single = unquote(value).strip()
    return [single] if single else []


def normalize_date(value: str | None) -> str | None:
    """Normalize ``YYYY/MM/DD`` and ISO dates to ``YYYY-MM-DD``.

    Anything else is parsed as an ISO timestamp and reduced to its (UTC) date;
    unparsable input yields None.
    """
    if not value:
        return None
    value = value.strip()
    if _SLASH_DATE.match(value):
        return value.replace("/", "-")
    if _ISO_DATE.match(value):
        return value
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Could not parse date: %s", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date().isoformat()


def _to_int(value: str, default: int) -> int:
    match = _LEADING_INT.match(value)
    return int(match.group(1)) if match else default


class _ThreatBuilder:
    """Collects ``[[rule.threat]]`` sub-tables into ThreatInfo dicts."""

    def __init__(self):
        self.threats: list[dict] = []
        self._target: dict | None = None

    def open_table(self, table: str) -> None:
        self._target = None
        if table == "rule.threat":
            threat = {"technique": []}
            self.threats.append(threat)
            self._target = threat
            return
        if not self.threats:
            return
        threat = self.threats[-1]
        if table == "rule.threat.tactic":
            threat["tactic"] = {}
            self._target = threat["tactic"]
        elif table == "rule.threat.technique":
            technique = {"subtechnique": []}
            threat["technique"].append(technique)
            self._target = technique
        elif table == "rule.threat.technique.subtechnique" and threat["technique"]:
            subtechnique: dict = {}
            threat["technique"][-1]["subtechnique"].append(subtechnique)
            self._target = subtechnique

    def assign(self, key: str, value: str) -> None:
        if self._target is not None and key in ("framework", "id", "name", "reference"):
            self._target[key] = unquote(value)

    def build(self) -> list[ThreatInfo]:
        result = []
        for raw in self.threats:
            try:
                result.append(ThreatInfo.model_validate(raw))
            except ValidationError as e:
                logger.debug("Dropping malformed threat entry %s: %s", raw, e)
        return result


class RuleParser:
    """Line-oriented state machine for a single rule file."""

    def __init__(self, filename: str):
        self.filename = filename
        self.state = ParserState.ROOT
        self.section = ParserState.ROOT
        self.table: str | None = None
        self.fields: dict = {}
        self.ml_job_ids: list[str] = []
        self.required_fields: list[str] = []
        self.threat = _ThreatBuilder()

        self._recent: deque[str] = deque(maxlen=2)
        self._capture_field: str | None = None
        self._capture_delimiter = ""
        self._buffer: list[str] = []
        self._array_key = ""
        self._array_parts: list[str] = []

    # ------------------------------------------------------------------
    # Line dispatch
    # ------------------------------------------------------------------

    def feed(self, raw_line: str) -> None:
        if self.state is ParserState.MULTILINE:
            self._continue_capture(raw_line)
            return

        line = raw_line.strip()
        if self.state is ParserState.ARRAY:
            self._continue_array(line)
            return

        if not line or line.startswith("#"):
            return

        try:
            if line == METADATA_MARKER:
                self._enter_section(ParserState.METADATA)
            elif line == RULE_MARKER:
                self._enter_section(ParserState.RULE)
            elif line.startswith("[") and line.endswith("]"):
                self._enter_table(line)
            elif self._find_delimiter(line) is not None:
                self._open_capture(line)
            elif " = " in line:
                key, _, value = line.partition(" = ")
                self._handle_assignment(key.strip(), value.strip())
        finally:
            self._recent.append(line)

    def _enter_section(self, section: ParserState) -> None:
        self.state = self.section = section
        self.table = None

    def _enter_table(self, line: str) -> None:
        self.state = self.section = ParserState.ROOT
        self.table = line.strip("[]").strip()
        self.threat.open_table(self.table)

    # ------------------------------------------------------------------
    # Multiline strings
    # ------------------------------------------------------------------

    @staticmethod
    def _find_delimiter(line: str) -> tuple[int, str] | None:
        found = [(line.find(d), d) for d in MULTILINE_DELIMITERS if d in line]
        return min(found) if found else None

    def _attribute_capture(self, line: str) -> str | None:
        """Owning key of a capture opened on ``line``.

        A key on the opening line decides alone; a bare delimiter looks back
        at the two lines before it.
        """
        own = _ASSIGNED_KEY.match(line)
        if own:
            return own.group(1) if own.group(1) in CAPTURE_FIELDS else None
        for candidate in reversed(self._recent):
            match = _CAPTURE_KEY.match(candidate)
            if match:
                return match.group(1)
        return None

    def _open_capture(self, line: str) -> None:
        index, delimiter = self._find_delimiter(line)
        self._capture_field = self._attribute_capture(line)
        self._capture_delimiter = delimiter
        rest = line[index + len(delimiter):]

        if delimiter in rest:
            self._buffer = [rest[:rest.index(delimiter)]]
            self._commit_capture()
            return

        self._buffer = [rest] if rest.strip() else []
        self.state = ParserState.MULTILINE

    def _continue_capture(self, raw_line: str) -> None:
        self._recent.append(raw_line.strip())
        if self._capture_delimiter in raw_line:
            self._buffer.append(raw_line[:raw_line.index(self._capture_delimiter)])
            self._commit_capture()
        else:
            self._buffer.append(raw_line)

    def _commit_capture(self) -> None:
        text = "\n".join(self._buffer).strip()
        if self._capture_field:
            self.fields[self._capture_field] = text
        else:
            logger.debug("%s: multiline string with no owning key discarded", self.filename)
        self._buffer = []
        self._capture_field = None
        self.state = self.section

    # ------------------------------------------------------------------
    # Arrays spanning several lines
    # ------------------------------------------------------------------

    def _continue_array(self, line: str) -> None:
        if not line or line.startswith("#"):
            return
        self._recent.append(line)
        self._array_parts.append(line)
        if "]" in line:
            self.state = self.section
            self._assign(self._array_key, " ".join(self._array_parts))
            self._array_parts = []

    # ------------------------------------------------------------------
    # key = value routing
    # ------------------------------------------------------------------

    def _handle_assignment(self, key: str, value: str) -> None:
        if value.startswith("[") and "]" not in value:
            self._array_key = key
            self._array_parts = [value]
            self.state = ParserState.ARRAY
            return
        self._assign(key, value)

    def _assign(self, key: str, value: str) -> None:
        if self.section is ParserState.METADATA:
            self._assign_metadata(key, value)
        elif self.section is ParserState.RULE:
            self._assign_rule(key, value)
        elif self.table == "rule.required_fields":
            if key == "name" and unquote(value):
                self.required_fields.append(unquote(value))
        elif self.table and self.table.startswith("rule.threat"):
            self.threat.assign(key, value)

    def _assign_metadata(self, key: str, value: str) -> None:
        if key == "creation_date":
            self.fields["creation_date"] = normalize_date(unquote(value))
        elif key == "updated_date":
            self.fields["updated_date"] = normalize_date(unquote(value))
        elif key == "maturity":
            self.fields["maturity"] = unquote(value)
        elif key == "integration":
            self.fields["integration"] = parse_array(value)

    def _assign_rule(self, key: str, value: str) -> None:
        clean = unquote(value)
        if key in _RULE_SCALARS:
            self.fields[_RULE_SCALARS[key]] = clean
        elif key in _RULE_TEXT:
            self.fields[key] = clean
        elif key in _RULE_ARRAYS:
            self.fields[_RULE_ARRAYS[key]] = parse_array(value)
        elif key == "language":
            self.fields["language"] = self._enum_value(RuleLanguage, clean, key)
        elif key == "severity":
            self.fields["severity"] = self._enum_value(RuleSeverity, clean, key)
        elif key == "risk_score":
            self.fields["risk_score"] = _to_int(clean, 0)
        elif key == "version":
            self.fields["version"] = _to_int(clean, 1)
        elif key == "machine_learning_job_id":
            self.ml_job_ids = parse_array(value)
        elif key == "anomaly_threshold":
            self.fields["anomaly_threshold"] = _to_int(clean, 0)

    def _enum_value(self, enum_cls, value: str, key: str):
        try:
            return enum_cls(value.lower())
        except ValueError:
            logger.debug("%s: unsupported %s %r ignored", self.filename, key, value)
            return None

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def finish(self) -> DetectionRule | RuleRejection:
        if self.state is ParserState.MULTILINE:
            logger.debug("%s: unterminated multiline string discarded", self.filename)
        elif self.state is ParserState.ARRAY:
            logger.debug("%s: unterminated array for %r discarded", self.filename, self._array_key)

        fields = {k: v for k, v in self.fields.items() if v is not None}
        name = (fields.get("name") or "").strip()
        query = fields.get("query") or ""
        is_ml = bool(self.ml_job_ids)

        if not query and is_ml:
            fields["query"] = query = ML_QUERY_PREFIX + ", ".join(self.ml_job_ids)
            fields.setdefault("rule_type", ML_RULE_TYPE)

        required = self.required_fields
        if query and not is_ml and not required:
            required = extract_fields(query)

        if not name or (not query and not is_ml):
            missing = [label for label, ok in (("name", name), ("query", query)) if not ok]
            return RuleRejection(self.filename, f"missing {' and '.join(missing)}")

        common = dict(
            fields,
            id=PurePosixPath(self.filename).stem,
            name=name,
            rule_source=self.filename,
            last_updated=datetime.now(timezone.utc).isoformat(),
            required_fields=required,
            threat=self.threat.build(),
        )
        try:
            if is_ml:
                return MachineLearningRule(machine_learning_job_ids=self.ml_job_ids, **common)
            common.pop("anomaly_threshold", None)
            return StandardRule(**common)
        except ValidationError as e:
            return RuleRejection(self.filename, f"invalid rule: {e.error_count()} validation error(s)")


def parse_rule(text: str, filename: str) -> DetectionRule | RuleRejection:
    """Parse one rule file. Returns a DetectionRule or a RuleRejection, never raises."""
    parser = RuleParser(filename)
    try:
        for line in text.splitlines():
            parser.feed(line)
        result = parser.finish()
    except Exception as e:
        logger.warning("Failed to parse %s: %s", filename, e)
        return RuleRejection(filename, f"parse error: {e}")

    if isinstance(result, RuleRejection):
        logger.warning("Skipping incomplete rule %s (%s)", filename, result.reason)
    elif isinstance(result, MachineLearningRule):
        logger.info("Processed ML rule: %s (jobs: %s)", result.name, ", ".join(result.machine_learning_job_ids))
    return result
