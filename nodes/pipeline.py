"""
Extraction Pipeline - Raw Text to ExtractionResult

Composes the stages into the single entry point used by the processing
graph and the API:

    normalize -> classify -> extract candidates -> deduplicate
    -> completeness -> flags -> risk score -> sort

The pipeline is a pure function of its input text. It never raises for
unreadable or empty text: absence of data shows up as missing entities,
a None document type and the default completeness.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from state import DocumentState, ExtractedMetadata
from nodes.classifier import classify_document_type
from nodes.extractor import ExtractedEntity, deduplicate_entities, extract_candidates
from nodes.ocr import normalize_text
from nodes.scoring import (
    calculate_completeness,
    calculate_risk_score,
    document_verdict,
    identify_risk_flags,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Result Model
# ============================================================================

@dataclass(frozen=True)
class ExtractionResult:
    """
    Everything extracted from one document's text.

    Entities are unique by key and sorted by category name.
    """
    entities: Tuple[ExtractedEntity, ...]
    raw_text: str
    document_type: Optional[str]
    completeness: int
    risk_score: int
    flags: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the JSON field names consumers already read."""
        return {
            "entities": [e.to_dict() for e in self.entities],
            "rawText": self.raw_text,
            "documentType": self.document_type,
            "completeness": self.completeness,
            "riskScore": self.risk_score,
            "flags": list(self.flags),
        }

    def to_metadata(self, ocr_mode: str) -> ExtractedMetadata:
        """Build the `metadata` payload persisted on the document record."""
        return {
            "entities": [e.to_dict() for e in self.entities],
            "documentType": self.document_type,
            "completeness": self.completeness,
            "riskScore": self.risk_score,
            "flags": list(self.flags),
            "processedAt": datetime.now(timezone.utc).isoformat(),
            "ocrMode": ocr_mode,
        }

    @property
    def verdict(self) -> str:
        """Document status implied by this result."""
        return document_verdict(self.completeness, self.risk_score, self.flags).value


# ============================================================================
# Pipeline
# ============================================================================

def extract_real_estate_entities(raw_text: Optional[str]) -> ExtractionResult:
    """
    Run the full extraction pipeline over OCR'd text.

    Args:
        raw_text: Text as produced by OCR (may be empty)

    Returns:
        ExtractionResult; raw_text is carried through unmodified
    """
    raw_text = raw_text or ""
    text = normalize_text(raw_text)

    document_type = classify_document_type(text)
    entities = deduplicate_entities(extract_candidates(text))

    completeness = calculate_completeness(entities, document_type)
    flags = identify_risk_flags(entities, text)
    risk_score = calculate_risk_score(flags, completeness)

    ordered = sorted(entities, key=lambda e: e.category.value)

    logger.info(
        f"Extracted {len(ordered)} entities "
        f"(type={document_type}, completeness={completeness}, risk={risk_score})"
    )

    return ExtractionResult(
        entities=tuple(ordered),
        raw_text=raw_text,
        document_type=document_type,
        completeness=completeness,
        risk_score=risk_score,
        flags=tuple(flags),
    )


# ============================================================================
# Main Node Function
# ============================================================================

def extraction_node(state: DocumentState) -> Dict[str, Any]:
    """
    Node B: The Extractor

    Runs the pattern pipeline over raw_text, or the canned mock extractor
    when OCR ran in mock mode. Sets `extraction` and the document verdict.
    """
    print("--- NODE: EXTRACTOR ---")

    if state.get("status") == "failed":
        print("   Skipping: OCR failed")
        return {}

    ocr_mode = state.get("ocr_mode", "real")

    if ocr_mode in ("mock", "mock_fallback"):
        from nodes.mock_extractor import mock_extract_real_estate_entities
        result = mock_extract_real_estate_entities(state.get("filename") or "document")
    else:
        result = extract_real_estate_entities(state.get("raw_text", ""))

    verdict = result.verdict
    print(f"   Type: {result.document_type} | Completeness: {result.completeness}% "
          f"| Risk: {result.risk_score} | Verdict: {verdict}")

    return {
        "extraction": result.to_metadata(ocr_mode),
        "verdict": verdict,
        "status": verdict,
    }
