"""
Document Classifier - Keyword-Based Document Type Detection

Identifies which kind of property document an OCR'd text is (Title Deed,
NOC, Allotment Letter, ...) so completeness can be scored against the right
required-field table.

Classification is an ordered list of keyword rules evaluated against the
lowercased text. The first rule that matches wins, so rule order is part of
the behavior: a sale deed that also mentions an "agreement" for "sale" is
still a Title Deed.

Text with no matching keyword is left unclassified (None) rather than forced
into a type; completeness scoring falls back to its default for it.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


# ============================================================================
# Document Types
# ============================================================================

class DocumentType(Enum):
    """
    Property document types recognised by the classifier.

    Values are the labels persisted as `documentType` and referenced by
    compliance rules in `document_types`.
    """
    TITLE_DEED = "Title Deed"
    NOC = "NOC"
    ALLOTMENT_LETTER = "Allotment Letter"
    SALE_AGREEMENT = "Sale Agreement"
    POWER_OF_ATTORNEY = "Power of Attorney"
    ENCUMBRANCE_CERTIFICATE = "Encumbrance Certificate"
    TAX_RECEIPT = "Tax Receipt"
    BUILDING_PLAN = "Building Plan"

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["DocumentType"]:
        """Look up a type by its persisted label, case-insensitive."""
        if not label:
            return None
        label_lower = label.lower().strip()
        for doc_type in cls:
            if doc_type.value.lower() == label_lower:
                return doc_type
        return None


# ============================================================================
# Keyword Rules
# ============================================================================

@dataclass(frozen=True)
class KeywordRule:
    """
    A single classification rule.

    Matches when the text contains any phrase from `any_of`, or, for rules
    that need several words together, every phrase from `all_of`.
    """
    document_type: DocumentType
    any_of: Tuple[str, ...] = ()
    all_of: Tuple[str, ...] = ()

    def matches(self, text_lower: str) -> bool:
        if self.any_of and any(phrase in text_lower for phrase in self.any_of):
            return True
        if self.all_of and all(phrase in text_lower for phrase in self.all_of):
            return True
        return False


# Order matters: first match wins.
CLASSIFICATION_RULES: List[KeywordRule] = [
    KeywordRule(DocumentType.TITLE_DEED, any_of=("title deed", "sale deed")),
    KeywordRule(DocumentType.NOC, any_of=("no objection", "noc")),
    KeywordRule(DocumentType.ALLOTMENT_LETTER, any_of=("allotment",)),
    KeywordRule(DocumentType.SALE_AGREEMENT, all_of=("agreement", "sale")),
    KeywordRule(DocumentType.POWER_OF_ATTORNEY, any_of=("power of attorney", "poa")),
    KeywordRule(DocumentType.ENCUMBRANCE_CERTIFICATE, any_of=("encumbrance",)),
    KeywordRule(DocumentType.TAX_RECEIPT, any_of=("tax receipt", "property tax")),
    KeywordRule(DocumentType.BUILDING_PLAN, any_of=("building plan", "sanction")),
]


def detect_document_type(text: str) -> Optional[DocumentType]:
    """
    Classify text into a DocumentType.

    Args:
        text: Raw or normalized document text

    Returns:
        The first matching DocumentType, or None if no rule matched
    """
    if not text:
        return None

    text_lower = text.lower()
    for rule in CLASSIFICATION_RULES:
        if rule.matches(text_lower):
            logger.debug(f"Classified as {rule.document_type.value}")
            return rule.document_type

    return None


def classify_document_type(text: str) -> Optional[str]:
    """Classify text and return the persisted label (or None)."""
    doc_type = detect_document_type(text)
    return doc_type.value if doc_type else None
