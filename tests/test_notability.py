"""Tests for the notability gate."""

import json

import pytest

from cfp.core.config import LLMConfig, SearchConfig
from cfp.core.exceptions import SearchProviderError
from cfp.core.models import Location, SearchResult, SourceType
from cfp.knowledge_graph.notability import (
    REASON_HEURISTIC,
    REASON_INSUFFICIENT,
    REASON_LOW_CONFIDENCE,
    REASON_NO_RESULTS,
    REASON_RATE_LIMITED,
    DailyQueryBudget,
    NotabilityGate,
    build_search_queries,
    detect_source_type,
    parse_assessment,
)
from fakes import NOTABILITY_MODEL, FakeSearch, ScriptedLLM, assessment_json, fast_policy, news_results, run

AUSTIN = Location(city="Austin", region="TX")


def make_gate(search, llm, budget=1000, **search_overrides):
    return NotabilityGate(
        search,
        llm,
        search_config=SearchConfig(**search_overrides),
        llm_config=LLMConfig(notability_model=NOTABILITY_MODEL),
        query_budget=DailyQueryBudget(budget),
        search_retry=fast_policy("search"),
        llm_retry=fast_policy("llm"),
    )


def judged_llm(payload):
    return ScriptedLLM(assessment=lambda prompt: payload)


class TestNotabilityGate:
    def test_three_serious_references_pass(self):
        gate = make_gate(FakeSearch(news_results(3)), judged_llm(assessment_json(3)))
        verdict = run(gate.assess("Acme Plumbing", AUSTIN, "https://acmeplumbing.com"))

        assert verdict.passed
        assert verdict.reasons == []
        assert verdict.suggestions == []
        assert verdict.serious_reference_count == 3
        assert verdict.confidence == pytest.approx(0.9)
        assert len(verdict.references) == 3
        assert all(r.source_type == SourceType.NEWS for r in verdict.references)

    def test_two_serious_references_fail(self):
        gate = make_gate(FakeSearch(news_results(2)), judged_llm(assessment_json(2)))
        verdict = run(gate.assess("Acme Plumbing", AUSTIN))

        assert not verdict.passed
        assert verdict.reasons == [REASON_INSUFFICIENT]
        assert verdict.serious_reference_count == 2
        assert any("at least 3" in s for s in verdict.suggestions)

    def test_low_confidence_fails_even_with_references(self):
        gate = make_gate(FakeSearch(news_results(3)), judged_llm(assessment_json(3, confidence=0.5)))
        verdict = run(gate.assess("Acme Plumbing", AUSTIN))

        assert not verdict.passed
        assert verdict.reasons == [REASON_LOW_CONFIDENCE]

    def test_company_pages_are_never_independent(self):
        results = news_results(2) + [
            SearchResult(title="About us", url="https://acmeplumbing.com/about", snippet="Our story"),
        ]
        gate = make_gate(FakeSearch(results), judged_llm(assessment_json(3)))
        verdict = run(gate.assess("Acme Plumbing", AUSTIN, "https://www.acmeplumbing.com"))

        assert not verdict.passed
        assert verdict.serious_reference_count == 2
        assert all("acmeplumbing.com" not in r.url for r in verdict.references)

    def test_heuristic_fallback_when_llm_unavailable(self):
        llm = ScriptedLLM(assessment=None)
        gate = make_gate(FakeSearch(news_results(4)), llm)
        verdict = run(gate.assess("Acme Plumbing", AUSTIN))

        assert not verdict.passed
        assert verdict.confidence == pytest.approx(0.6)
        assert REASON_HEURISTIC in verdict.reasons
        assert REASON_LOW_CONFIDENCE in verdict.reasons
        # The judge was retried before falling back
        assert llm.calls.count(NOTABILITY_MODEL) == 2

    def test_unparseable_judgment_falls_back(self):
        gate = make_gate(FakeSearch(news_results(3)), judged_llm("I think they are notable."))
        verdict = run(gate.assess("Acme Plumbing", AUSTIN))

        assert REASON_HEURISTIC in verdict.reasons
        assert not verdict.passed

    def test_no_results_skips_the_llm(self):
        llm = judged_llm(assessment_json(3))
        gate = make_gate(FakeSearch([]), llm)
        verdict = run(gate.assess("Acme Plumbing", AUSTIN))

        assert not verdict.passed
        assert verdict.reasons == [REASON_NO_RESULTS]
        assert verdict.confidence == 1.0
        assert llm.calls == []
        assert gate.llm_calls == 0

    def test_rate_limited_without_searching(self):
        search = FakeSearch(news_results(3))
        gate = make_gate(search, judged_llm(assessment_json(3)), budget=1)
        verdict = run(gate.assess("Acme Plumbing", AUSTIN))

        assert not verdict.passed
        assert verdict.reasons == [REASON_RATE_LIMITED]
        assert search.queries == []

    def test_all_searches_failing_raises(self):
        search = FakeSearch(error=SearchProviderError("quota exceeded", status_code=503))
        gate = make_gate(search, judged_llm(assessment_json(3)))

        with pytest.raises(SearchProviderError):
            run(gate.assess("Acme Plumbing", AUSTIN))

    def test_results_are_deduplicated_and_capped(self):
        search = FakeSearch(news_results(4))
        gate = make_gate(search, judged_llm(assessment_json(4)), max_results=3)
        verdict = run(gate.assess("Acme Plumbing LLC", AUSTIN))

        # Three query strategies for a name with a legal suffix
        assert len(search.queries) == 3
        assert verdict.search_result_count == 3


class TestQueryBuilding:
    def test_queries_with_legal_suffix(self):
        queries = build_search_queries("Acme Plumbing LLC", AUSTIN)
        assert queries == [
            ('"Acme Plumbing LLC" Austin TX', 10),
            ('"Acme Plumbing" Austin TX', 5),
            ('"Acme Plumbing" (site:*.gov OR site:*.edu)', 5),
        ]

    def test_queries_without_location(self):
        queries = build_search_queries("Acme Plumbing", None)
        assert queries[0] == ('"Acme Plumbing"', 10)
        assert len(queries) == 2


class TestSourceDetection:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.sos.state.tx.gov/record", SourceType.GOVERNMENT),
            ("https://news.utexas.edu/story", SourceType.ACADEMIC),
            ("https://opencorporates.com/companies/us_tx/1", SourceType.DATABASE),
            ("https://www.yelp.com/biz/acme", SourceType.DIRECTORY),
            ("https://www.trustpilot.com/review/acme", SourceType.REVIEW),
            ("https://www.austinchronicle.com/news", SourceType.NEWS),
            ("https://someblog.net/post", SourceType.OTHER),
            ("https://shop.acmeplumbing.com/", SourceType.COMPANY),
        ],
    )
    def test_detect_source_type(self, url, expected):
        result = SearchResult(title="t", url=url)
        assert detect_source_type(result, "acmeplumbing.com") == expected

    def test_parse_assessment_ignores_bad_indexes(self):
        payload = json.loads(assessment_json(2))
        payload["references"].append({"index": 9, "isSerious": True})
        payload["references"].append({"index": "x"})
        payload["confidence"] = 1.7

        assessment = parse_assessment(payload, result_count=2)
        assert sorted(assessment.judgments) == [0, 1]
        assert assessment.confidence == 1.0


class TestDailyQueryBudget:
    def test_consumes_until_exhausted(self):
        budget = DailyQueryBudget(5)
        assert budget.try_consume(3)
        assert not budget.try_consume(3)
        assert budget.remaining == 2
        assert budget.try_consume(2)
        assert budget.remaining == 0
