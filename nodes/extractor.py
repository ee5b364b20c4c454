"""
Extractor - Pattern-Based Entity Extraction

This module handles:
1. The entity data model (ExtractedEntity, EntityCategory)
2. A declarative table of field patterns for property documents
3. A single first-match-wins engine that runs the table over text
4. Deduplication of candidates by key, keeping the most confident one

Each field has an ordered list of patterns and a fixed confidence. Patterns
are tried in priority order; the first one that yields a usable value wins
and later patterns for that field are not consulted. A field whose patterns
all miss produces no entity at all - absence is never an error.

Keyword labels ("Buyer", "Plot No", "Stamp Duty") are matched
case-insensitively; captured names and codes keep their case.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


# ============================================================================
# Entity Model
# ============================================================================

class EntityCategory(str, Enum):
    """Category an extracted field belongs to."""
    PARTY = "party"
    PROPERTY = "property"
    FINANCIAL = "financial"
    DATE = "date"
    LEGAL = "legal"


@dataclass(frozen=True)
class ExtractedEntity:
    """
    A single extracted fact about a document.

    A value of None means the field was not found; confidence 0.0 is
    reserved for that case.
    """
    key: str
    label: str
    value: Optional[str]
    confidence: float
    category: EntityCategory

    @property
    def has_value(self) -> bool:
        """True when the entity carries a non-empty value."""
        return bool(self.value and self.value.strip())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted entity shape."""
        return {
            "key": self.key,
            "label": self.label,
            "value": self.value,
            "confidence": self.confidence,
            "category": self.category.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedEntity":
        """
        Build an entity from a persisted row.

        Rows written by older clients may lack label/category; unknown
        categories fall back to the category of the known field, or legal.
        """
        key = str(data.get("key", ""))
        definition = FIELD_PATTERNS_BY_KEY.get(key)

        raw_category = data.get("category")
        try:
            category = EntityCategory(raw_category)
        except ValueError:
            category = definition.category if definition else EntityCategory.LEGAL

        value = data.get("value")
        try:
            confidence = float(data.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0

        return cls(
            key=key,
            label=str(data.get("label") or (definition.label if definition else key)),
            value=None if value is None else str(value),
            confidence=confidence,
            category=category,
        )


def find_entity(entities: Iterable[ExtractedEntity], key: str) -> Optional[ExtractedEntity]:
    """Return the first entity with the given key, or None."""
    for entity in entities:
        if entity.key == key:
            return entity
    return None


# ============================================================================
# Pattern Building Blocks
# ============================================================================

# A run of capitalised words on one line. A word directly followed by a colon
# is the next field's label ("Buyer: John Doe Seller: ...") and is excluded.
NAME_GROUP = r"([A-Z][A-Za-z]*(?:[ \t]+(?![A-Za-z]+[ \t]*:)[A-Z][A-Za-z]*)*)"

# Company names may also contain ampersands ("Sharma & Sons").
COMPANY_GROUP = r"([A-Z&][A-Za-z&]*(?:[ \t]+(?![A-Za-z&]+[ \t]*:)[A-Z&][A-Za-z&]*)*)"

# Plot, survey, deed and registration identifiers: A-12, 123/45, DOC/2024/17.
CODE_GROUP = r"([A-Za-z0-9\-/]+)"

AMOUNT_GROUP = r"(\d[\d,]*(?:\.\d+)?)"

DATE_GROUP = r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})"

CURRENCY_PREFIX = r"(?:\b(?i:rs\.?|inr)|₹)"

AREA_UNIT = r"(?i:sq\.?\s*ft|square\s+feet|sqft)"


def _min_length(min_len: int) -> Callable[[str], bool]:
    def check(value: str) -> bool:
        return len(value) >= min_len
    return check


def _has_digit(value: str) -> bool:
    return any(ch.isdigit() for ch in value)


# ============================================================================
# Field Pattern Table
# ============================================================================

@dataclass(frozen=True)
class FieldPattern:
    """
    Declarative extraction rule for one field.

    Attributes:
        key: Stable entity key (e.g. buyer_name)
        label: Display label
        category: Entity category
        patterns: Regexes tried in priority order; group 1 is the value
        confidence: Fixed confidence assigned on a hit
        strip_thousands: Remove "," separators from the captured value
        validator: Optional check a cleaned value must pass to count as a hit
        max_length: Longer captures are cut to this many characters
    """
    key: str
    label: str
    category: EntityCategory
    patterns: Tuple["re.Pattern[str]", ...]
    confidence: float
    strip_thousands: bool = False
    validator: Optional[Callable[[str], bool]] = None
    max_length: Optional[int] = None

    def clean(self, raw: str) -> str:
        value = raw.strip()
        if self.strip_thousands:
            value = value.replace(",", "")
        if self.max_length is not None:
            value = value[:self.max_length].rstrip()
        return value


def _compile(*patterns: str) -> Tuple["re.Pattern[str]", ...]:
    return tuple(re.compile(p) for p in patterns)


FIELD_PATTERNS: List[FieldPattern] = [
    # --- Party -------------------------------------------------------------
    FieldPattern(
        key="buyer_name",
        label="Buyer Name",
        category=EntityCategory.PARTY,
        patterns=_compile(
            r"\b(?i:buyer|purchaser|vendee)(?i:'?s?\s+name)?[:\s]+" + NAME_GROUP,
            r"\b(?i:sold\s+to)[:\s]+" + NAME_GROUP,
            r"\b(?i:in\s+favour\s+of)[:\s]+" + NAME_GROUP,
        ),
        confidence=0.75,
        validator=_min_length(3),
        max_length=41,
    ),
    FieldPattern(
        key="seller_name",
        label="Seller Name",
        category=EntityCategory.PARTY,
        patterns=_compile(
            r"\b(?i:seller|vendor)(?i:'?s?\s+name)?[:\s]+" + NAME_GROUP,
            r"\b(?i:sold\s+by)[:\s]+" + NAME_GROUP,
        ),
        confidence=0.75,
        validator=_min_length(3),
        max_length=41,
    ),
    FieldPattern(
        key="builder_name",
        label="Builder/Developer",
        category=EntityCategory.PARTY,
        patterns=_compile(
            r"\b(?i:builder|developer|promoter)[:\s]+" + COMPANY_GROUP,
        ),
        confidence=0.70,
        validator=_min_length(3),
        max_length=51,
    ),
    # --- Property ----------------------------------------------------------
    FieldPattern(
        key="plot_number",
        label="Plot/Flat Number",
        category=EntityCategory.PROPERTY,
        patterns=_compile(
            r"\b(?i:plot|flat|unit|apartment)\b(?i:\s+no\.?|\s+number)?[:\s#]*" + CODE_GROUP,
            r"\b(?i:property\s+no)\.?[:\s]*" + CODE_GROUP,
        ),
        confidence=0.80,
        validator=_has_digit,
    ),
    FieldPattern(
        key="property_address",
        label="Property Address",
        category=EntityCategory.PROPERTY,
        patterns=_compile(
            r"\b(?i:address)[:\s]+([^\n]{10,150})",
        ),
        confidence=0.65,
    ),
    FieldPattern(
        key="area_sqft",
        label="Area (Sq.Ft.)",
        category=EntityCategory.PROPERTY,
        patterns=_compile(
            r"\b(?i:area|size)[:\s]*(\d[\d,]*\.?\d*)\s*" + AREA_UNIT,
            r"(\d[\d,]*\.?\d*)\s*" + AREA_UNIT,
        ),
        confidence=0.70,
        strip_thousands=True,
    ),
    FieldPattern(
        key="survey_number",
        label="Survey Number",
        category=EntityCategory.PROPERTY,
        patterns=_compile(
            r"\b(?i:survey\s+no)\.?[:\s]*([0-9\-/]+)",
        ),
        confidence=0.75,
        validator=_has_digit,
    ),
    # --- Financial ---------------------------------------------------------
    FieldPattern(
        key="sale_price",
        label="Sale Price",
        category=EntityCategory.FINANCIAL,
        patterns=_compile(
            r"\b(?i:sale\s+price|consideration|amount)[:\s]*" + CURRENCY_PREFIX + r"?\s*" + AMOUNT_GROUP,
            CURRENCY_PREFIX + r"\s*" + AMOUNT_GROUP + r"\s*(?i:only|lakhs?|crores?)",
        ),
        confidence=0.70,
        strip_thousands=True,
    ),
    FieldPattern(
        key="stamp_duty",
        label="Stamp Duty",
        category=EntityCategory.FINANCIAL,
        patterns=_compile(
            r"\b(?i:stamp\s+duty)[:\s]*(?:\b(?i:rs\.?)|₹)?\s*" + AMOUNT_GROUP,
        ),
        confidence=0.65,
        strip_thousands=True,
    ),
    # --- Date --------------------------------------------------------------
    FieldPattern(
        key="registration_date",
        label="Registration Date",
        category=EntityCategory.DATE,
        patterns=_compile(
            r"\b(?i:registration|registered)\s+(?i:date|on)[:\s]*" + DATE_GROUP,
            r"\b(?i:dated)[:\s]*" + DATE_GROUP,
        ),
        confidence=0.75,
    ),
    FieldPattern(
        key="execution_date",
        label="Execution Date",
        category=EntityCategory.DATE,
        patterns=_compile(
            r"\b(?i:execution|executed)\s+(?i:date|on)[:\s]*" + DATE_GROUP,
        ),
        confidence=0.70,
    ),
    # --- Legal -------------------------------------------------------------
    FieldPattern(
        key="document_number",
        label="Document Number",
        category=EntityCategory.LEGAL,
        patterns=_compile(
            r"\b(?i:document|deed|instrument)\s+(?i:no)\.?[:\s]*" + CODE_GROUP,
        ),
        confidence=0.80,
        validator=_has_digit,
    ),
    FieldPattern(
        key="registration_number",
        label="Registration Number",
        category=EntityCategory.LEGAL,
        patterns=_compile(
            r"\b(?i:registration)\s+(?i:no\.?|number)[:\s]*" + CODE_GROUP,
        ),
        confidence=0.80,
        validator=_has_digit,
    ),
]

FIELD_PATTERNS_BY_KEY: Dict[str, FieldPattern] = {p.key: p for p in FIELD_PATTERNS}


# ============================================================================
# Extraction Engine
# ============================================================================

def extract_field(text: str, definition: FieldPattern) -> Optional[ExtractedEntity]:
    """
    Run one field's patterns over text in priority order.

    Returns the entity from the first pattern that produces a usable value,
    or None if every pattern misses.
    """
    if not text:
        return None

    for pattern in definition.patterns:
        for match in pattern.finditer(text):
            value = definition.clean(match.group(1) or "")
            if not value:
                continue
            if definition.validator and not definition.validator(value):
                continue
            return ExtractedEntity(
                key=definition.key,
                label=definition.label,
                value=value,
                confidence=definition.confidence,
                category=definition.category,
            )

    return None


def extract_category(text: str, category: EntityCategory) -> List[ExtractedEntity]:
    """Extract every field of one category."""
    entities: List[ExtractedEntity] = []
    for definition in FIELD_PATTERNS:
        if definition.category is not category:
            continue
        entity = extract_field(text, definition)
        if entity:
            entities.append(entity)
    return entities


def extract_parties(text: str) -> List[ExtractedEntity]:
    """Buyer, seller and builder names."""
    return extract_category(text, EntityCategory.PARTY)


def extract_property_details(text: str) -> List[ExtractedEntity]:
    """Plot number, address, area and survey number."""
    return extract_category(text, EntityCategory.PROPERTY)


def extract_financial_details(text: str) -> List[ExtractedEntity]:
    """Sale price and stamp duty."""
    return extract_category(text, EntityCategory.FINANCIAL)


def extract_dates(text: str) -> List[ExtractedEntity]:
    """Registration and execution dates."""
    return extract_category(text, EntityCategory.DATE)


def extract_legal_details(text: str) -> List[ExtractedEntity]:
    """Document and registration numbers."""
    return extract_category(text, EntityCategory.LEGAL)


def extract_candidates(text: str) -> List[ExtractedEntity]:
    """Run all five extractors and concatenate their candidates."""
    candidates = (
        extract_parties(text)
        + extract_property_details(text)
        + extract_financial_details(text)
        + extract_dates(text)
        + extract_legal_details(text)
    )
    logger.debug(f"Extracted {len(candidates)} candidate entities")
    return candidates


# ============================================================================
# Deduplication
# ============================================================================

def deduplicate_entities(entities: Iterable[ExtractedEntity]) -> List[ExtractedEntity]:
    """
    Keep one entity per key: the one with the highest confidence.

    On a tie the earlier entity is kept. A replacing entity moves to the end
    of the sequence.
    """
    unique: Dict[str, ExtractedEntity] = {}
    for entity in entities:
        existing = unique.get(entity.key)
        if existing is None or entity.confidence > existing.confidence:
            unique.pop(entity.key, None)
            unique[entity.key] = entity
    return list(unique.values())
