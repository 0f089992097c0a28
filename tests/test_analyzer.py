"""Tests for heuristic response classification."""

import pytest

from cfp.core.models import PromptCategory, Sentiment
from cfp.fingerprint.analyzer import (
    EXACT_MATCH_CONFIDENCE,
    VARIATION_MATCH_CONFIDENCE,
    HeuristicResponseAnalyzer,
    classify_sentiment,
    detect_mention,
    extract_competitors,
    extract_rank,
    is_valid_business_name,
)

RECOMMENDATION = """Here are some top-rated dentists in Austin, TX:

1. **Bright Smile Dental** - Known for gentle care.
2. Austin Family Dentistry: convenient hours
3. Smith & Jones Dental Centre (downtown)
4. Yelp
5. Lakeline Dental Group, PLLC

I'd recommend checking reviews before booking.
"""


class TestMentionDetection:
    def test_exact_match(self):
        match = detect_mention("I have heard good things about Smith & Jones Dental Centre.", "Smith & Jones Dental Centre")
        assert match.mentioned
        assert match.confidence == EXACT_MATCH_CONFIDENCE

    def test_variation_match(self):
        match = detect_mention("Smith and Jones Dental Centre is popular.", "Smith & Jones Dental Centre LLC")
        assert match.mentioned
        assert match.confidence == VARIATION_MATCH_CONFIDENCE

    def test_word_boundaries(self):
        assert not detect_mention("Acme Plumbingworks is nearby.", "Acme Plumbing").mentioned

    def test_acronym_must_be_capitalised(self):
        name = "Austin Dental Center"
        assert detect_mention("ADC has a strong reputation.", name).mentioned
        assert not detect_mention("the adc setting", name).mentioned

    def test_no_mention(self):
        match = detect_mention("I don't have information about that business.", "Acme Plumbing")
        assert not match.mentioned


class TestSentiment:
    def test_unmentioned_is_neutral(self):
        reading = classify_sentiment("This place is excellent and reliable.", mentioned=False)
        assert reading.sentiment == Sentiment.NEUTRAL

    def test_positive_keywords(self):
        reading = classify_sentiment("They are professional, reliable and highly recommended.", True)
        assert reading.sentiment == Sentiment.POSITIVE
        assert reading.score > 0.3

    def test_negative_keywords(self):
        reading = classify_sentiment("Customers report complaints and rude, unprofessional staff.", True)
        assert reading.sentiment == Sentiment.NEGATIVE

    def test_mixed_is_neutral(self):
        reading = classify_sentiment("Service is great but often slow.", True)
        assert reading.sentiment == Sentiment.NEUTRAL

    def test_implicit_patterns(self):
        assert classify_sentiment("They seem like a solid option.", True).sentiment == Sentiment.POSITIVE
        assert classify_sentiment("There is limited information online.", True).sentiment == Sentiment.NEGATIVE


class TestCompetitorsAndRank:
    def test_competitors_in_list_order(self):
        competitors = extract_competitors(RECOMMENDATION, "Smith & Jones Dental Centre")
        assert competitors == ["Bright Smile Dental", "Austin Family Dentistry", "Lakeline Dental Group"]

    def test_rank_from_numbered_line(self):
        assert extract_rank(RECOMMENDATION, "Smith & Jones Dental Centre") == 3

    def test_rank_from_sentence(self):
        text = "Among local options, Acme Plumbing is ranked #2 by many reviewers."
        assert extract_rank(text, "Acme Plumbing") == 2

    def test_rank_out_of_range_ignored(self):
        lines = "\n".join(f"{i}. Business Number {i}" for i in range(1, 12))
        text = lines + "\n12. Acme Plumbing\n"
        assert extract_rank(text, "Acme Plumbing") is None

    def test_bullet_position(self):
        text = "Good options:\n- Bolt Plumbing\n- Acme Plumbing\n"
        assert extract_rank(text, "Acme Plumbing") == 2

    @pytest.mark.parametrize(
        "name, valid",
        [
            ("Bright Smile Dental", True),
            ("here are some options", False),
            ("Here are the best", False),
            ("Services", False),
            ("A", False),
            ("This is a long sentence. It keeps going", False),
        ],
    )
    def test_business_name_filter(self, name, valid):
        assert is_valid_business_name(name) is valid


class TestHeuristicResponseAnalyzer:
    def test_recommendation_classification(self):
        result = HeuristicResponseAnalyzer().classify(
            RECOMMENDATION, "Smith & Jones Dental Centre", PromptCategory.RECOMMENDATION
        )
        assert result.mentioned
        assert result.rank == 3
        assert result.sentiment == Sentiment.POSITIVE
        assert len(result.competitors) == 3
        assert 0.0 < result.confidence <= 1.0

    def test_factual_response_has_no_rank_or_competitors(self):
        result = HeuristicResponseAnalyzer().classify(
            RECOMMENDATION, "Smith & Jones Dental Centre", PromptCategory.FACTUAL
        )
        assert result.mentioned
        assert result.rank is None
        assert result.competitors == []
