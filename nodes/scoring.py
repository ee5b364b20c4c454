"""
Scoring - Completeness, Risk Flags and Risk Score

Turns a deduplicated entity list into the derived numbers shown on a
document card:

- completeness: share of the document type's required fields that were found
- flags: human-readable red flags (missing critical fields, low confidence,
  cancellation or copy language)
- risk score: 0-100 blend of incompleteness and flag count

Also maps an extraction result onto the document status used by the vault
(checked / needs_info / suspect).
"""

import math
import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence

from nodes.classifier import DocumentType
from nodes.extractor import ExtractedEntity

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

# Completeness reported when the document type has no required-field table
# (unclassified or a type without requirements).
DEFAULT_COMPLETENESS = 50

# Valued entities below this confidence are flagged.
LOW_CONFIDENCE_THRESHOLD = 0.6

# Fields every property document is expected to name.
CRITICAL_FIELDS = ("buyer_name", "seller_name", "plot_number")

# Risk contribution per point of incompleteness and per flag.
INCOMPLETENESS_WEIGHT = 0.5
FLAG_WEIGHT = 15
MAX_RISK_SCORE = 100

CANCELLATION_TERMS = ("cancel", "void")
COPY_TERMS = ("duplicate", "copy")

FLAG_CANCELLED = "Document may be cancelled/void"
FLAG_COPY = "Appears to be a copy/duplicate"

REQUIRED_FIELDS_BY_TYPE: Dict[str, List[str]] = {
    DocumentType.TITLE_DEED.value: [
        "buyer_name", "seller_name", "plot_number", "registration_date", "sale_price",
    ],
    DocumentType.NOC.value: ["builder_name", "plot_number", "property_address"],
    DocumentType.ALLOTMENT_LETTER.value: ["buyer_name", "plot_number", "area_sqft"],
    DocumentType.SALE_AGREEMENT.value: ["buyer_name", "seller_name", "plot_number", "sale_price"],
}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (round() uses banker's rounding)."""
    return int(math.floor(value + 0.5))


# ============================================================================
# Completeness
# ============================================================================

def get_required_fields(document_type: Optional[str]) -> List[str]:
    """Required field keys for a document type label (any case); empty if none."""
    doc_type = DocumentType.from_label(document_type)
    if doc_type is None:
        return []
    return list(REQUIRED_FIELDS_BY_TYPE.get(doc_type.value, []))


def calculate_completeness(
    entities: Sequence[ExtractedEntity],
    document_type: Optional[str],
) -> int:
    """
    Percentage (0-100) of required fields present with a value.

    Returns DEFAULT_COMPLETENESS when the type has no required-field table.
    """
    required = get_required_fields(document_type)
    if not required:
        return DEFAULT_COMPLETENESS

    found = {e.key for e in entities if e.has_value and e.key in required}
    return round_half_up(100 * len(found) / len(required))


# ============================================================================
# Risk Flags
# ============================================================================

def identify_risk_flags(entities: Sequence[ExtractedEntity], text: str) -> List[str]:
    """
    Inspect entities and raw text for red flags.

    Blank text yields no flags: nothing was read, so there is nothing to
    judge. The incompleteness term of the risk score still applies.
    """
    if not text or not text.strip():
        return []

    flags: List[str] = []

    low_confidence = [
        e for e in entities if e.has_value and e.confidence < LOW_CONFIDENCE_THRESHOLD
    ]
    if low_confidence:
        flags.append(f"Low confidence in {len(low_confidence)} field(s)")

    present = {e.key for e in entities if e.has_value}
    missing_critical = [key for key in CRITICAL_FIELDS if key not in present]
    if missing_critical:
        flags.append(f"Missing critical: {', '.join(missing_critical)}")

    text_lower = text.lower()
    if any(term in text_lower for term in CANCELLATION_TERMS):
        flags.append(FLAG_CANCELLED)

    if any(term in text_lower for term in COPY_TERMS):
        flags.append(FLAG_COPY)

    return flags


# ============================================================================
# Risk Score
# ============================================================================

def calculate_risk_score(flags: Sequence[str], completeness: int) -> int:
    """
    Combine incompleteness and flag count into a 0-100 score.

    risk = (100 - completeness) * 0.5 + 15 per flag, capped at 100.
    """
    raw = (100 - completeness) * INCOMPLETENESS_WEIGHT + len(flags) * FLAG_WEIGHT
    return max(0, min(round_half_up(raw), MAX_RISK_SCORE))


# ============================================================================
# Document Verdict
# ============================================================================

class DocumentStatus(str, Enum):
    """Lifecycle status of a stored document."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    CHECKED = "checked"
    READY = "ready"
    NEEDS_INFO = "needs_info"
    SUSPECT = "suspect"
    FAILED = "failed"


SUSPECT_RISK_THRESHOLD = 70
SUSPECT_FLAG_COUNT = 2
CHECKED_COMPLETENESS = 80
NEEDS_INFO_COMPLETENESS = 40


def document_verdict(completeness: int, risk_score: int, flags: Sequence[str]) -> DocumentStatus:
    """
    Decide the final document status after extraction.

    High risk or many flags is suspect regardless of completeness.
    """
    if risk_score > SUSPECT_RISK_THRESHOLD or len(flags) > SUSPECT_FLAG_COUNT:
        return DocumentStatus.SUSPECT
    if completeness >= CHECKED_COMPLETENESS:
        return DocumentStatus.CHECKED
    if completeness >= NEEDS_INFO_COMPLETENESS:
        return DocumentStatus.NEEDS_INFO
    return DocumentStatus.SUSPECT
