"""Tests for JSON extraction from model output and business-name helpers."""

import pytest

from cfp.utils.json_utils import coerce_json_payload
from cfp.utils.names import acronym, clean_business_name, name_variations, strip_legal_suffix


class TestCoerceJsonPayload:
    def test_plain_object(self):
        assert coerce_json_payload('{"confidence": 0.8}') == {"confidence": 0.8}

    def test_fenced_block_with_prose(self):
        text = 'Here is my assessment:\n```json\n{"confidence": 0.7, "references": []}\n```\nThanks'
        assert coerce_json_payload(text) == {"confidence": 0.7, "references": []}

    def test_trailing_comma_and_surrounding_text(self):
        text = 'Result: {"summary": "ok", "recommendations": ["a", "b",],} done'
        assert coerce_json_payload(text) == {"summary": "ok", "recommendations": ["a", "b"]}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]"])
    def test_unparseable_raises(self, text):
        with pytest.raises(ValueError):
            coerce_json_payload(text)


class TestBusinessNames:
    def test_clean_drops_trailing_numeric_id(self):
        assert clean_business_name("  Acme Plumbing 1699999999 ") == "Acme Plumbing"
        assert clean_business_name("Studio 54") == "Studio 54"

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Acme Plumbing, LLC", "Acme Plumbing"),
            ("Acme Plumbing Inc.", "Acme Plumbing"),
            ("Acme Holdings Group Ltd", "Acme Holdings"),
            ("LLC", "LLC"),
        ],
    )
    def test_strip_legal_suffix(self, name, expected):
        assert strip_legal_suffix(name) == expected

    def test_acronym_needs_two_words(self):
        assert acronym("Austin Dental Center") == "ADC"
        assert acronym("The Austin Dental Center") == "ADC"
        assert acronym("Acme") == ""

    def test_variations(self):
        variations = name_variations("The Smith & Jones Dental Centre LLC")
        assert "The Smith & Jones Dental Centre" in variations
        assert "Smith & Jones Dental Centre" in variations
        assert "Smith and Jones Dental Centre" in variations
        assert "Smith & Jones Dental Center" in variations
        assert "SJDC" in variations
        assert "The Smith & Jones Dental Centre LLC" not in variations

    def test_variations_are_unique(self):
        variations = name_variations("Acme Plumbing")
        assert len(variations) == len({v.lower() for v in variations})
        assert "Acme Plumbing" not in variations
