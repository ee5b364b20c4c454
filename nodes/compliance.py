"""
Compliance Rule Engine

Checks the documents of a compliance case against operator-defined rules.

Rule categories:
- required_field: a field must be present (optionally only for some
  document types; other types produce no result at all)
- value_range: currently only check_type "confidence" - every valued field
  must reach a minimum extraction confidence
- cross_document: a field must have the same value in every document of
  the case (compared trimmed and case-insensitively)

evaluate_rule() judges one rule against one document. run_compliance_check()
evaluates every active rule against every document, derives the case status
and prepares the "compliance failed" notification payload. Nothing here
touches storage or the network; the caller persists results and sends the
notification.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from state import (
    CaseState,
    CheckResultRecord,
    ComplianceRuleRecord,
    DocumentRecord,
    FailureNotification,
)
from nodes.extractor import ExtractedEntity, find_entity

logger = logging.getLogger(__name__)


# ============================================================================
# Enums & Errors
# ============================================================================

class RuleCategory(str, Enum):
    REQUIRED_FIELD = "required_field"
    VALUE_RANGE = "value_range"
    CROSS_DOCUMENT = "cross_document"


class CheckStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"


class CaseStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class RuleConfigError(ValueError):
    """Raised when a rule's configuration doesn't fit its category."""

    def __init__(self, rule_id: str, message: str):
        self.rule_id = rule_id
        self.message = message
        super().__init__(f"Rule {rule_id or '<new>'}: {message}")


# Default confidence floor for value_range/confidence rules
DEFAULT_MIN_CONFIDENCE = 0.6

# Failure messages containing these words count toward "high" severity
CRITICAL_MARKERS = ("critical", "required")
HIGH_SEVERITY_CRITICAL_COUNT = 2
MEDIUM_SEVERITY_FAILURE_COUNT = 3


# ============================================================================
# Rule Model
# ============================================================================

@dataclass(frozen=True)
class RequiredFieldConfig:
    field: str
    document_types: Tuple[str, ...] = ()
    message: Optional[str] = None


@dataclass(frozen=True)
class ValueRangeConfig:
    check_type: Optional[str] = None
    min_value: Optional[float] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class CrossDocumentConfig:
    field: str
    message: Optional[str] = None


RuleConfig = Union[RequiredFieldConfig, ValueRangeConfig, CrossDocumentConfig]


def _require_field(rule_id: str, config: Dict[str, Any]) -> str:
    value = config.get("field")
    if not value or not isinstance(value, str):
        raise RuleConfigError(rule_id, "rule_config.field is required")
    return value


def build_rule_config(rule_id: str, category: str, config: Optional[Dict[str, Any]]) -> Optional[RuleConfig]:
    """
    Parse a schema-free rule_config into the config type for its category.

    Returns None for unknown categories; such rules never produce results.

    Raises:
        RuleConfigError: If a known category is missing required keys
    """
    config = config or {}
    message = config.get("message") or None

    if category == RuleCategory.REQUIRED_FIELD.value:
        document_types = config.get("document_types") or ()
        if isinstance(document_types, str):
            document_types = (document_types,)
        return RequiredFieldConfig(
            field=_require_field(rule_id, config),
            document_types=tuple(str(t) for t in document_types),
            message=message,
        )

    if category == RuleCategory.VALUE_RANGE.value:
        min_value = config.get("min_value")
        if min_value is not None:
            try:
                min_value = float(min_value)
            except (TypeError, ValueError):
                raise RuleConfigError(rule_id, f"min_value must be a number, got {min_value!r}")
        return ValueRangeConfig(
            check_type=config.get("check_type"),
            min_value=min_value,
            message=message,
        )

    if category == RuleCategory.CROSS_DOCUMENT.value:
        return CrossDocumentConfig(field=_require_field(rule_id, config), message=message)

    logger.warning(f"Rule {rule_id}: unknown category '{category}', rule will be ignored")
    return None


@dataclass(frozen=True)
class ComplianceRule:
    """
    An operator-defined rule. Severity "error" turns missing required
    fields into failures; any other severity makes them warnings.
    """
    id: str
    name: str
    category: str
    config: Optional[RuleConfig]
    severity: str = "error"
    description: str = ""
    is_active: bool = True
    rule_config: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComplianceRule":
        rule_id = str(data.get("id") or "")
        category = str(data.get("category") or "")
        rule_config = dict(data.get("rule_config") or {})
        return cls(
            id=rule_id,
            name=str(data.get("name") or rule_id),
            category=category,
            config=build_rule_config(rule_id, category, rule_config),
            severity=str(data.get("severity") or "error"),
            description=str(data.get("description") or ""),
            is_active=bool(data.get("is_active", True)),
            rule_config=rule_config,
        )

    def to_dict(self) -> ComplianceRuleRecord:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "rule_config": dict(self.rule_config),
            "severity": self.severity,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class CaseDocument:
    """The parts of a stored document the rule engine looks at."""
    id: str
    filename: str
    document_type: Optional[str]
    entities: Tuple[ExtractedEntity, ...] = ()

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "CaseDocument":
        """
        Read a document record. The extraction lives under `metadata`, or
        `extracted` on older rows; bare `entities` are used as a last resort.
        """
        extraction = record.get("metadata") or record.get("extracted") or {}
        raw_entities = extraction.get("entities") or record.get("entities") or []
        return cls(
            id=str(record.get("id") or ""),
            filename=record.get("filename") or "unknown",
            document_type=extraction.get("documentType"),
            entities=tuple(ExtractedEntity.from_dict(e) for e in raw_entities),
        )

    def entity(self, key: str) -> Optional[ExtractedEntity]:
        return find_entity(self.entities, key)


# ============================================================================
# Check Results
# ============================================================================

@dataclass
class CheckResult:
    """Verdict of one rule against one document."""
    status: CheckStatus
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    rule_id: str = ""
    document_id: str = ""
    case_id: str = ""
    rule_name: str = ""
    document_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Report shape returned by the API."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
        }

    def to_record(self) -> CheckResultRecord:
        """Row shape persisted by the store."""
        return {
            "case_id": self.case_id,
            "document_id": self.document_id,
            "rule_id": self.rule_id,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
        }


# ============================================================================
# Rule Evaluation
# ============================================================================

def _check_required_field(
    rule: ComplianceRule, config: RequiredFieldConfig, document: CaseDocument
) -> Optional[CheckResult]:
    if config.document_types and document.document_type not in config.document_types:
        return None

    entity = document.entity(config.field)
    if entity is None or not entity.has_value:
        status = CheckStatus.FAILED if rule.severity == "error" else CheckStatus.WARNING
        return CheckResult(
            status=status,
            message=config.message or f"Missing required field: {config.field}",
            details={"field": config.field},
        )

    return CheckResult(
        status=CheckStatus.PASSED,
        message=f"Field {config.field} is present",
        details={"field": config.field, "value": entity.value},
    )


def _check_value_range(config: ValueRangeConfig, document: CaseDocument) -> Optional[CheckResult]:
    # Only the confidence check exists; other check types yield no result.
    if config.check_type != "confidence":
        return None

    min_value = DEFAULT_MIN_CONFIDENCE if config.min_value is None else config.min_value
    low = [e for e in document.entities if e.has_value and e.confidence < min_value]

    if low:
        return CheckResult(
            status=CheckStatus.WARNING,
            message=config.message or "Some fields have low confidence",
            details={"fields": [{"key": e.key, "confidence": e.confidence} for e in low]},
        )

    return CheckResult(
        status=CheckStatus.PASSED,
        message="All fields have acceptable confidence",
    )


def _check_cross_document(
    config: CrossDocumentConfig, case_documents: Sequence[CaseDocument]
) -> CheckResult:
    raw_values: List[str] = []
    normalized: List[str] = []
    for doc in case_documents:
        entity = doc.entity(config.field)
        if entity is None or not entity.value:
            continue
        if entity.value not in raw_values:
            raw_values.append(entity.value)
        key = entity.value.strip().lower()
        if key not in normalized:
            normalized.append(key)

    if len(normalized) > 1:
        return CheckResult(
            status=CheckStatus.FAILED,
            message=config.message or f"Inconsistent {config.field} across documents",
            details={"field": config.field, "values": normalized, "raw_values": raw_values},
        )

    if not normalized:
        return CheckResult(
            status=CheckStatus.WARNING,
            message=f"{config.field} not found in any document",
            details={"field": config.field},
        )

    return CheckResult(
        status=CheckStatus.PASSED,
        message=f"{config.field} is consistent across documents",
        details={"field": config.field, "value": raw_values[0]},
    )


def evaluate_rule(
    rule: ComplianceRule,
    document: CaseDocument,
    case_documents: Sequence[CaseDocument],
) -> Optional[CheckResult]:
    """
    Evaluate one rule against one document of a case.

    Returns None when the rule does not apply (excluded document type,
    unsupported check type or unknown category).
    """
    config = rule.config

    if isinstance(config, RequiredFieldConfig):
        result = _check_required_field(rule, config, document)
    elif isinstance(config, ValueRangeConfig):
        result = _check_value_range(config, document)
    elif isinstance(config, CrossDocumentConfig):
        result = _check_cross_document(config, case_documents)
    else:
        return None

    if result is not None:
        result.rule_id = rule.id
        result.rule_name = rule.name
        result.document_id = document.id
        result.document_name = document.filename
    return result


# ============================================================================
# Case Aggregation
# ============================================================================

def derive_case_status(results: Sequence[CheckResult]) -> CaseStatus:
    """Failed if any check failed, otherwise passed."""
    if any(r.status is CheckStatus.FAILED for r in results):
        return CaseStatus.FAILED
    return CaseStatus.PASSED


def summarize_results(results: Sequence[CheckResult]) -> Dict[str, int]:
    return {
        "total": len(results),
        "passed": sum(1 for r in results if r.status is CheckStatus.PASSED),
        "failed": sum(1 for r in results if r.status is CheckStatus.FAILED),
        "warnings": sum(1 for r in results if r.status is CheckStatus.WARNING),
    }


def classify_failure_severity(failed: Sequence[CheckResult]) -> str:
    """
    high: 2+ failures mentioning "critical" or "required"
    medium: 3+ failures
    low: anything else
    """
    critical = [
        r for r in failed
        if any(marker in r.message.lower() for marker in CRITICAL_MARKERS)
    ]
    if len(critical) >= HIGH_SEVERITY_CRITICAL_COUNT:
        return "high"
    if len(failed) >= MEDIUM_SEVERITY_FAILURE_COUNT:
        return "medium"
    return "low"


def build_failure_notification(
    case_id: str,
    results: Sequence[CheckResult],
    documents: Sequence[CaseDocument],
) -> Optional[FailureNotification]:
    """
    Payload for the "compliance failed" notification, addressed to the
    case's first document. None when nothing failed or the case is empty.
    """
    failed = [r for r in results if r.status is CheckStatus.FAILED]
    if not failed or not documents:
        return None

    first = documents[0]
    return {
        "documentId": first.id,
        "filename": first.filename or "unknown",
        "caseId": case_id,
        "failedChecks": "\n".join(f"• {r.rule_name}: {r.message}" for r in failed),
        "severity": classify_failure_severity(failed),
    }


@dataclass
class ComplianceReport:
    """Outcome of checking one case."""
    case_id: str
    case_status: CaseStatus
    results: List[CheckResult]
    summary: Dict[str, int]
    notification: Optional[FailureNotification] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "caseStatus": self.case_status.value,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary,
        }

    def to_records(self) -> List[CheckResultRecord]:
        return [r.to_record() for r in self.results]


def run_compliance_check(
    case_id: str,
    rules: Sequence[ComplianceRule],
    documents: Sequence[CaseDocument],
) -> ComplianceReport:
    """
    Evaluate every active rule against every document of a case.

    Inactive rules are skipped. Every (rule, document) pair is evaluated
    exactly once and each non-None verdict becomes one result.
    """
    results: List[CheckResult] = []
    for rule in rules:
        if not rule.is_active:
            continue
        for document in documents:
            result = evaluate_rule(rule, document, documents)
            if result is None:
                continue
            result.case_id = case_id
            results.append(result)

    case_status = derive_case_status(results)
    summary = summarize_results(results)
    logger.info(
        f"Case {case_id}: {case_status.value} "
        f"({summary['passed']} passed, {summary['failed']} failed, {summary['warnings']} warnings)"
    )

    return ComplianceReport(
        case_id=case_id,
        case_status=case_status,
        results=results,
        summary=summary,
        notification=build_failure_notification(case_id, results, documents),
    )


# ============================================================================
# Seed Rules
# ============================================================================

DEFAULT_RULES: List[ComplianceRuleRecord] = [
    {
        "id": "rule-buyer-required",
        "name": "Buyer Name Required",
        "description": "Every sale document must name the buyer",
        "category": "required_field",
        "rule_config": {
            "field": "buyer_name",
            "document_types": ["Title Deed", "Sale Agreement", "Allotment Letter"],
            "message": "Buyer name is required",
        },
        "severity": "error",
        "is_active": True,
    },
    {
        "id": "rule-seller-required",
        "name": "Seller Name Required",
        "description": "Deeds and sale agreements must name the seller",
        "category": "required_field",
        "rule_config": {
            "field": "seller_name",
            "document_types": ["Title Deed", "Sale Agreement"],
            "message": "Seller name is required",
        },
        "severity": "error",
        "is_active": True,
    },
    {
        "id": "rule-plot-required",
        "name": "Plot Number Required",
        "description": "The property must be identified by plot or flat number",
        "category": "required_field",
        "rule_config": {"field": "plot_number", "message": "Plot/flat number is required"},
        "severity": "error",
        "is_active": True,
    },
    {
        "id": "rule-registration-date",
        "name": "Registration Date",
        "description": "Title deeds should carry a registration date",
        "category": "required_field",
        "rule_config": {"field": "registration_date", "document_types": ["Title Deed"]},
        "severity": "warning",
        "is_active": True,
    },
    {
        "id": "rule-confidence",
        "name": "Extraction Confidence",
        "description": "Flag fields extracted with low confidence for manual review",
        "category": "value_range",
        "rule_config": {"check_type": "confidence", "min_value": 0.6},
        "severity": "warning",
        "is_active": True,
    },
    {
        "id": "rule-buyer-consistent",
        "name": "Buyer Consistency",
        "description": "The buyer must be the same person on every document",
        "category": "cross_document",
        "rule_config": {"field": "buyer_name", "message": "Buyer name differs between documents"},
        "severity": "error",
        "is_active": True,
    },
    {
        "id": "rule-plot-consistent",
        "name": "Plot Consistency",
        "description": "All documents must refer to the same plot",
        "category": "cross_document",
        "rule_config": {"field": "plot_number", "message": "Critical: plot number differs between documents"},
        "severity": "error",
        "is_active": True,
    },
]


# ============================================================================
# Main Node Function
# ============================================================================

def compliance_node(state: CaseState) -> Dict[str, Any]:
    """
    Node C: Compliance

    Evaluates the case's documents against its rules. Rules with broken
    configuration are reported in `errors` and skipped.
    """
    print("--- NODE: COMPLIANCE ---")

    errors = list(state.get("errors", []))
    rules: List[ComplianceRule] = []
    for record in state.get("rules", []):
        try:
            rules.append(ComplianceRule.from_dict(record))
        except RuleConfigError as e:
            logger.error(f"Skipping rule: {e}")
            errors.append(str(e))

    documents = [CaseDocument.from_record(d) for d in state.get("documents", [])]
    report = run_compliance_check(state.get("case_id", ""), rules, documents)

    print(f"   {len(rules)} rules x {len(documents)} documents -> "
          f"{report.summary['total']} results, case {report.case_status.value}")

    return {
        "case_status": report.case_status.value,
        "results": [r.to_dict() for r in report.results],
        "summary": report.summary,
        "notification": report.notification,
        "errors": errors,
    }
