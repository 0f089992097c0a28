"""Tests for fingerprint aggregation: visibility score, leaderboard and trend."""

from datetime import timedelta

import pytest

from cfp.core.models import (
    FingerprintResult,
    MarketPosition,
    PromptCategory,
    Sentiment,
    VisibilityTrend,
    utcnow,
)
from cfp.fingerprint.scoring import (
    average_rank,
    build_analysis,
    build_leaderboard,
    mention_rate,
    sentiment_score,
    visibility_score,
    visibility_trend,
)

TARGET = "Acme Plumbing"


def result(
    category=PromptCategory.FACTUAL,
    mentioned=False,
    sentiment=Sentiment.NEUTRAL,
    rank=None,
    competitors=(),
    error=None,
    confidence=0.8,
) -> FingerprintResult:
    return FingerprintResult(
        model="test/model",
        category=category,
        prompt="prompt",
        mentioned=mentioned,
        sentiment=sentiment,
        rank=rank,
        competitors=list(competitors),
        confidence=confidence if error is None else 0.0,
        error=error,
    )


def recommendation(rank=None, competitors=(), mentioned=None):
    return result(
        category=PromptCategory.RECOMMENDATION,
        mentioned=rank is not None if mentioned is None else mentioned,
        sentiment=Sentiment.POSITIVE,
        rank=rank,
        competitors=competitors,
    )


class TestVisibilityScore:
    def test_weights(self):
        assert visibility_score(1.0, 1.0, 1.0) == 100
        assert visibility_score(0.0, -1.0, None) == 0
        # Neutral sentiment alone is worth 15 points
        assert visibility_score(0.0, 0.0, None) == 15
        assert visibility_score(0.5, 0.0, 6.0) == 25 + 15 + 10

    def test_rank_component_clamped(self):
        assert visibility_score(0.0, -1.0, 10.0) == 2
        assert visibility_score(0.0, -1.0, 25.0) == 0

    def test_score_in_bounds(self):
        for rate in (0.0, 0.33, 1.0):
            for sentiment in (-1.0, 0.0, 1.0):
                for rank in (None, 1.0, 10.0):
                    assert 0 <= visibility_score(rate, sentiment, rank) <= 100


class TestComponents:
    def test_failed_calls_count_against_mention_rate_only(self):
        results = [
            result(mentioned=True, sentiment=Sentiment.POSITIVE),
            result(mentioned=False, sentiment=Sentiment.NEGATIVE),
            result(error="TimeoutError: slow"),
            result(error="TimeoutError: slow"),
        ]
        assert mention_rate(results) == 0.25
        assert sentiment_score(results) == 0.0

    def test_average_rank_ignores_missing(self):
        results = [recommendation(rank=1), recommendation(rank=3), recommendation()]
        assert average_rank(results) == 2.0
        assert average_rank([result()]) is None

    def test_empty_inputs(self):
        assert mention_rate([]) == 0.0
        assert sentiment_score([]) == 0.0


class TestLeaderboard:
    def test_counts_and_first_seen_tiebreak(self):
        results = [
            recommendation(rank=2, competitors=["Bolt Plumbing", "Clear Drain"]),
            recommendation(competitors=["Clear Drain", "Bolt Plumbing"]),
            recommendation(rank=1, competitors=["Drip Doctors"]),
        ]
        board = build_leaderboard(results, TARGET)

        names = [c.name for c in board.competitors]
        # Bolt, the target and Clear all tie on 2; first appearance decides
        assert names == ["Bolt Plumbing", "Clear Drain", "Drip Doctors"]
        assert board.target.mention_count == 2
        assert board.target.rank == 2
        assert [c.rank for c in board.competitors] == [1, 3, 4]
        assert board.market_position == MarketPosition.COMPETITIVE

    def test_target_inserted_at_its_rank(self):
        results = [recommendation(rank=1, competitors=["Bolt Plumbing"])]
        board = build_leaderboard(results, TARGET)

        assert board.target.rank == 1
        assert board.target.avg_position == 1.0
        assert board.competitors[0].avg_position == 2.0
        assert board.competitors[0].appears_with_target == 1
        assert board.market_position == MarketPosition.LEADING

    def test_shares_never_exceed_one(self):
        results = [
            recommendation(rank=1, competitors=["B", "C", "D", "E"]),
            recommendation(competitors=["B", "C", "F"]),
        ]
        board = build_leaderboard(results, TARGET)
        assert board.total_share <= 1.0 + 1e-9
        assert board.recommendation_successes == 2

    def test_duplicate_names_count_once_per_response(self):
        results = [recommendation(competitors=["Bolt Plumbing", "bolt plumbing", "Bolt Plumbing "])]
        board = build_leaderboard(results, TARGET)
        assert len(board.competitors) == 1
        assert board.competitors[0].mention_count == 1

    def test_unmentioned_target(self):
        board = build_leaderboard([recommendation(competitors=["Bolt Plumbing"])], TARGET)
        assert board.target.mention_count == 0
        assert board.target.rank is None
        assert board.market_position == MarketPosition.UNKNOWN

    def test_trailing_target_is_emerging(self):
        results = [
            recommendation(competitors=["Bolt Plumbing"]),
            recommendation(competitors=["Bolt Plumbing"]),
            recommendation(rank=2, competitors=["Bolt Plumbing"]),
        ]
        board = build_leaderboard(results, TARGET)
        assert board.target.mention_count == 1
        assert board.market_position == MarketPosition.EMERGING

    def test_competitor_list_capped(self):
        names = [f"Competitor {i}" for i in range(15)]
        board = build_leaderboard([recommendation(competitors=names)], TARGET)
        assert len(board.competitors) == 10

    def test_non_recommendation_and_failed_results_ignored(self):
        results = [
            result(mentioned=True, competitors=["Bolt Plumbing"]),
            result(category=PromptCategory.RECOMMENDATION, error="boom"),
        ]
        board = build_leaderboard(results, TARGET)
        assert board.competitors == []
        assert board.recommendation_successes == 0


class TestBuildAnalysis:
    def test_deterministic(self):
        results = [
            result(mentioned=True, sentiment=Sentiment.POSITIVE),
            recommendation(rank=2, competitors=["Bolt Plumbing"]),
            result(error="LLMProviderError: 502"),
        ]
        first = build_analysis("run", "biz-1", TARGET, results)
        second = build_analysis("run", "biz-1", TARGET, results)

        assert first.visibility_score == second.visibility_score
        assert first.leaderboard == second.leaderboard
        assert first.success_count == 2
        assert first.total_calls == 3
        assert first.mention_rate == pytest.approx(2 / 3, abs=1e-4)
        assert first.overall_confidence == pytest.approx(0.8)


class TestVisibilityTrend:
    def _analysis(self, score, minutes_ago):
        return build_analysis("run", "biz-1", TARGET, [result()]).model_copy(
            update={"visibility_score": score, "created_at": utcnow() - timedelta(minutes=minutes_ago)}
        )

    @pytest.mark.parametrize(
        "previous,latest,expected",
        [
            (50, 55, VisibilityTrend.IMPROVING),
            (50, 54, VisibilityTrend.STABLE),
            (50, 46, VisibilityTrend.STABLE),
            (50, 45, VisibilityTrend.DECLINING),
        ],
    )
    def test_threshold(self, previous, latest, expected):
        history = [self._analysis(latest, 1), self._analysis(previous, 10)]
        assert visibility_trend(history) == expected

    def test_single_run_is_stable(self):
        assert visibility_trend([self._analysis(80, 0)]) == VisibilityTrend.STABLE
        assert visibility_trend([]) == VisibilityTrend.STABLE
