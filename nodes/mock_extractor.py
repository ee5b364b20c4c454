"""
Mock Extractor - Canned Results for Development

Returns a realistic ExtractionResult instantly, keyed off the filename, so
the vault and compliance screens can be exercised without an OCR engine.
Used when USE_MOCK_OCR is on or real OCR fails for environment reasons.
"""

from typing import List

from nodes.classifier import DocumentType
from nodes.extractor import ExtractedEntity, FIELD_PATTERNS_BY_KEY
from nodes.pipeline import ExtractionResult


def _entity(key: str, value: str, confidence: float) -> ExtractedEntity:
    definition = FIELD_PATTERNS_BY_KEY[key]
    return ExtractedEntity(
        key=key,
        label=definition.label,
        value=value,
        confidence=confidence,
        category=definition.category,
    )


def mock_extract_real_estate_entities(filename: str) -> ExtractionResult:
    """
    Generate a mock extraction for a file.

    'noc' in the name yields an NOC without seller or financial details,
    'allotment' an Allotment Letter, 'title'/'deed' a Title Deed with an
    execution date; anything else is a Sale Agreement.
    """
    name = (filename or "").lower()
    is_noc = "noc" in name
    is_allotment = "allotment" in name
    is_title_deed = "title" in name or "deed" in name

    entities: List[ExtractedEntity] = [_entity("buyer_name", "Manroop Singh", 0.85)]
    if not is_noc:
        entities.append(_entity("seller_name", "Rajesh Kumar Sharma", 0.82))
    entities += [
        _entity("builder_name", "The Learning Network Properties Ltd.", 0.78),
        _entity("plot_number", "A-101", 0.92),
        _entity("property_address", "Sector 15, Phase 2, Chandigarh, India", 0.75),
        _entity("area_sqft", "1250", 0.88),
        _entity("survey_number", "123/45", 0.70),
    ]
    if not is_noc:
        entities += [
            _entity("sale_price", "7500000", 0.80),
            _entity("stamp_duty", "450000", 0.72),
        ]
    entities.append(_entity("registration_date", "23/10/2024", 0.90))
    if is_title_deed:
        entities.append(_entity("execution_date", "15/10/2024", 0.87))
    entities += [
        _entity("document_number", "DOC/2024/17735", 0.95),
        _entity("registration_number", "REG/CHD/2024/2496817", 0.93),
    ]

    if is_noc:
        document_type = DocumentType.NOC
    elif is_allotment:
        document_type = DocumentType.ALLOTMENT_LETTER
    elif is_title_deed:
        document_type = DocumentType.TITLE_DEED
    else:
        document_type = DocumentType.SALE_AGREEMENT

    completeness = 75 if is_noc else 85
    risk_score = 25 if is_noc else 15

    flags: List[str] = []
    if completeness < 80:
        flags.append("Some fields have low confidence")
    if is_noc:
        flags.append("Document appears to be a copy/duplicate")

    ordered = sorted(entities, key=lambda e: e.category.value)

    return ExtractionResult(
        entities=tuple(ordered),
        raw_text=f"Mock extracted text from {filename}...",
        document_type=document_type.value,
        completeness=completeness,
        risk_score=risk_score,
        flags=tuple(flags),
    )
