"""
Tests for the pattern-based entity extractor.

Covers the field pattern table (one test per family of fields), the
first-valid-match engine and deduplication by confidence.
"""

import pytest

from nodes.extractor import (
    FIELD_PATTERNS,
    FIELD_PATTERNS_BY_KEY,
    EntityCategory,
    ExtractedEntity,
    deduplicate_entities,
    extract_candidates,
    extract_dates,
    extract_field,
    extract_financial_details,
    extract_legal_details,
    extract_parties,
    extract_property_details,
    find_entity,
)


def values(entities):
    return {e.key: e.value for e in entities}


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def sale_deed_text() -> str:
    return (
        "This Sale Deed is between Buyer: John Doe and Seller: Jane Roe "
        "for Plot No: A-12, dated 01/02/2023, Sale Price: Rs 500000."
    )


# ============================================================================
# Field Pattern Table
# ============================================================================

class TestFieldPatterns:
    """Tests for the declarative pattern table."""

    def test_keys_are_unique(self):
        keys = [definition.key for definition in FIELD_PATTERNS]
        assert len(keys) == len(set(keys))
        assert set(keys) == set(FIELD_PATTERNS_BY_KEY)

    @pytest.mark.parametrize("key,confidence", [
        ("buyer_name", 0.75),
        ("seller_name", 0.75),
        ("builder_name", 0.70),
        ("plot_number", 0.80),
        ("property_address", 0.65),
        ("area_sqft", 0.70),
        ("survey_number", 0.75),
        ("sale_price", 0.70),
        ("stamp_duty", 0.65),
        ("registration_date", 0.75),
        ("execution_date", 0.70),
        ("document_number", 0.80),
        ("registration_number", 0.80),
    ])
    def test_confidences(self, key, confidence):
        assert FIELD_PATTERNS_BY_KEY[key].confidence == confidence


# ============================================================================
# Party
# ============================================================================

class TestExtractParties:
    """Tests for buyer/seller/builder names."""

    def test_buyer_and_seller(self, sale_deed_text):
        """Names stop at the first lowercase word."""
        found = values(extract_parties(sale_deed_text))
        assert found["buyer_name"] == "John Doe"
        assert found["seller_name"] == "Jane Roe"

    def test_next_label_not_part_of_name(self):
        """A capitalised word followed by ':' starts the next field."""
        found = values(extract_parties("Buyer: John Doe Seller: Jane Roe"))
        assert found["buyer_name"] == "John Doe"
        assert found["seller_name"] == "Jane Roe"

    def test_labels_case_insensitive(self):
        found = values(extract_parties("BUYER: JOHN DOE"))
        assert found["buyer_name"] == "JOHN DOE"

    def test_sold_to_and_sold_by(self):
        found = values(extract_parties("The house was sold by Ravi Mehta, sold to Anita Rao."))
        assert found["seller_name"] == "Ravi Mehta"
        assert found["buyer_name"] == "Anita Rao"

    def test_in_favour_of(self):
        found = values(extract_parties("Executed in favour of Priya Nair"))
        assert found["buyer_name"] == "Priya Nair"

    def test_short_name_rejected(self):
        """Names shorter than three characters are not accepted."""
        assert "buyer_name" not in values(extract_parties("Buyer: Al"))

    def test_long_name_truncated(self):
        """Names longer than 41 characters are cut, not dropped."""
        text = (
            "Sale Deed. Buyer: Venkataraman Subramanian Ramaswamy Iyengar Krishnamurthy "
            "Seller: Jane Roe Plot No: A-12"
        )
        found = values(extract_parties(text))
        assert found["buyer_name"] == "Venkataraman Subramanian Ramaswamy Iyenga"
        assert len(found["buyer_name"]) == 41

    def test_long_builder_truncated(self):
        found = values(extract_parties("Builder: " + "Abcdefghij " * 6))
        assert found["builder_name"] == "Abcdefghij " * 4 + "Abcdefg"
        assert len(found["builder_name"]) == 51

    def test_builder_with_ampersand(self):
        found = values(extract_parties("Developer: Sharma & Sons Constructions"))
        assert found["builder_name"] == "Sharma & Sons Constructions"

    def test_confidence_and_category(self, sale_deed_text):
        buyer = find_entity(extract_parties(sale_deed_text), "buyer_name")
        assert buyer.confidence == 0.75
        assert buyer.category is EntityCategory.PARTY
        assert buyer.label == "Buyer Name"


# ============================================================================
# Property
# ============================================================================

class TestExtractPropertyDetails:
    """Tests for plot, address, area and survey number."""

    def test_plot_number(self, sale_deed_text):
        assert values(extract_property_details(sale_deed_text))["plot_number"] == "A-12"

    def test_plot_code_needs_digit(self):
        """'flat roof' is not a flat number; the next match is used."""
        found = values(extract_property_details("The flat roof covers Plot No: 7"))
        assert found["plot_number"] == "7"

    def test_property_no(self):
        found = values(extract_property_details("Property No. 55/B"))
        assert found["plot_number"] == "55/B"

    def test_address_stops_at_line_end(self):
        text = "Address: Sector 15, Phase 2, Chandigarh\nArea: 1,250 sq ft"
        found = values(extract_property_details(text))
        assert found["property_address"] == "Sector 15, Phase 2, Chandigarh"

    def test_short_address_ignored(self):
        assert "property_address" not in values(extract_property_details("Address: Here"))

    def test_area_strips_separators(self):
        found = values(extract_property_details("Area: 1,250 sq ft"))
        assert found["area_sqft"] == "1250"

    def test_area_without_label(self):
        found = values(extract_property_details("admeasuring 900 square feet"))
        assert found["area_sqft"] == "900"

    def test_survey_number(self):
        found = values(extract_property_details("Survey No. 123/45"))
        assert found["survey_number"] == "123/45"


# ============================================================================
# Financial
# ============================================================================

class TestExtractFinancialDetails:
    """Tests for sale price and stamp duty."""

    def test_sale_price(self, sale_deed_text):
        assert values(extract_financial_details(sale_deed_text))["sale_price"] == "500000"

    def test_sale_price_strips_separators(self):
        found = values(extract_financial_details("Sale Price: Rs. 75,00,000 only"))
        assert found["sale_price"] == "7500000"

    def test_rupee_amount_only(self):
        found = values(extract_financial_details("paid ₹ 45,000 only to the vendor"))
        assert found["sale_price"] == "45000"

    def test_stamp_duty(self):
        found = values(extract_financial_details("Stamp Duty: Rs 4,50,000"))
        assert found["stamp_duty"] == "450000"


# ============================================================================
# Dates & Legal
# ============================================================================

class TestExtractDates:
    """Tests for registration and execution dates."""

    def test_dated(self, sale_deed_text):
        assert values(extract_dates(sale_deed_text))["registration_date"] == "01/02/2023"

    def test_registration_pattern_has_priority(self):
        """The registration pattern wins over 'dated' even when later in the text."""
        text = "Letter dated 01/01/2020. Registered on: 23.10.2024"
        assert values(extract_dates(text))["registration_date"] == "23.10.2024"

    def test_execution_date(self):
        assert values(extract_dates("Executed on 15-10-2024"))["execution_date"] == "15-10-2024"


class TestExtractLegalDetails:
    """Tests for document and registration numbers."""

    def test_document_number(self):
        found = values(extract_legal_details("Document No: DOC/2024/17735"))
        assert found["document_number"] == "DOC/2024/17735"

    def test_registration_number(self):
        found = values(extract_legal_details("Registration No: REG/CHD/2024/2496817"))
        assert found["registration_number"] == "REG/CHD/2024/2496817"


# ============================================================================
# Engine
# ============================================================================

class TestExtractField:
    """Tests for the generic engine."""

    def test_miss_returns_none(self):
        assert extract_field("nothing useful", FIELD_PATTERNS_BY_KEY["buyer_name"]) is None

    def test_empty_text(self):
        assert extract_field("", FIELD_PATTERNS_BY_KEY["plot_number"]) is None

    def test_candidates_for_sale_deed(self, sale_deed_text):
        keys = {e.key for e in extract_candidates(sale_deed_text)}
        assert keys == {"buyer_name", "seller_name", "plot_number", "registration_date", "sale_price"}


# ============================================================================
# Entity Model & Deduplication
# ============================================================================

def _entity(key, value, confidence, category=EntityCategory.PARTY):
    return ExtractedEntity(key=key, label=key, value=value, confidence=confidence, category=category)


class TestDeduplicateEntities:
    """Tests for deduplicate_entities()."""

    def test_keeps_highest_confidence(self):
        result = deduplicate_entities([_entity("a", "low", 0.6), _entity("a", "high", 0.8)])
        assert len(result) == 1
        assert result[0].value == "high"

    def test_tie_keeps_first(self):
        result = deduplicate_entities([_entity("a", "first", 0.7), _entity("a", "second", 0.7)])
        assert result[0].value == "first"

    def test_replacement_moves_to_end(self):
        result = deduplicate_entities([
            _entity("a", "x", 0.5),
            _entity("b", "y", 0.7),
            _entity("a", "z", 0.9),
        ])
        assert [e.key for e in result] == ["b", "a"]
        assert result[1].value == "z"

    def test_empty(self):
        assert deduplicate_entities([]) == []


class TestExtractedEntity:
    """Tests for entity serialization."""

    def test_to_dict(self):
        entity = _entity("buyer_name", "John", 0.75)
        assert entity.to_dict() == {
            "key": "buyer_name",
            "label": "buyer_name",
            "value": "John",
            "confidence": 0.75,
            "category": "party",
        }

    def test_from_dict_fills_label_and_category(self):
        entity = ExtractedEntity.from_dict({"key": "plot_number", "value": "A-1", "confidence": 0.9})
        assert entity.label == "Plot/Flat Number"
        assert entity.category is EntityCategory.PROPERTY

    def test_from_dict_unknown_key(self):
        entity = ExtractedEntity.from_dict({"key": "custom", "value": None, "category": "other"})
        assert entity.category is EntityCategory.LEGAL
        assert entity.confidence == 0.0
        assert not entity.has_value

    def test_has_value(self):
        assert not _entity("a", "  ", 0.5).has_value
        assert _entity("a", "x", 0.5).has_value
