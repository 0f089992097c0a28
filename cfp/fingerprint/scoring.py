"""
Aggregation of classified fingerprint results.

All functions are deterministic for identical inputs. Failed calls count as
non-mentions in the mention rate but are excluded from sentiment and
leaderboard denominators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from cfp.core.models import (
    CompetitiveLeaderboard,
    FingerprintAnalysis,
    FingerprintResult,
    LeaderboardEntry,
    MarketPosition,
    PromptCategory,
    Sentiment,
    VisibilityTrend,
)

MENTION_WEIGHT = 0.5
SENTIMENT_WEIGHT = 0.3
RANK_WEIGHT = 0.2

MAX_LEADERBOARD_COMPETITORS = 10
TREND_THRESHOLD = 5


def mention_rate(results: Sequence[FingerprintResult]) -> float:
    if not results:
        return 0.0
    return sum(1 for r in results if r.succeeded and r.mentioned) / len(results)


def sentiment_score(results: Sequence[FingerprintResult]) -> float:
    """Fraction positive minus fraction negative over successful calls, in [-1, 1]."""
    successes = [r for r in results if r.succeeded]
    if not successes:
        return 0.0
    positive = sum(1 for r in successes if r.sentiment == Sentiment.POSITIVE)
    negative = sum(1 for r in successes if r.sentiment == Sentiment.NEGATIVE)
    return (positive - negative) / len(successes)


def average_rank(results: Sequence[FingerprintResult]) -> Optional[float]:
    ranks = [r.rank for r in results if r.succeeded and r.rank is not None]
    if not ranks:
        return None
    return sum(ranks) / len(ranks)


def visibility_score(rate: float, sentiment: float, avg_rank: Optional[float]) -> int:
    """
    Weighted 0-100 visibility score.

    mention rate 50%, sentiment (rescaled from [-1, 1] to [0, 1]) 30%, and
    rank 20% where rank 1 scores 1.0 and rank 10 scores 0.1. Without any
    observed rank the rank component is 0.
    """
    sentiment_component = (sentiment + 1) / 2
    rank_component = 0.0
    if avg_rank is not None:
        rank_component = min(max((11 - avg_rank) / 10, 0.0), 1.0)

    raw = 100 * (
        MENTION_WEIGHT * rate
        + SENTIMENT_WEIGHT * sentiment_component
        + RANK_WEIGHT * rank_component
    )
    return int(min(max(round(raw), 0), 100))


@dataclass
class _Tally:
    name: str
    first_seen: int
    count: int = 0
    positions: List[int] = field(default_factory=list)
    with_target: int = 0

    @property
    def avg_position(self) -> Optional[float]:
        if not self.positions:
            return None
        return round(sum(self.positions) / len(self.positions), 2)


def build_leaderboard(
    results: Sequence[FingerprintResult], business_name: str
) -> CompetitiveLeaderboard:
    """
    Tally competitor mentions across successful recommendation responses.

    Every name counts at most once per response. Entries are ordered by
    mention count, ties broken by first appearance; within one response the
    target is placed at its extracted rank. Shares are count divided by
    whichever is larger of recommendation successes and total tallied
    mentions, so shares never sum above 1.
    """
    recommendations = [
        r for r in results if r.succeeded and r.category == PromptCategory.RECOMMENDATION
    ]
    tallies: Dict[str, _Tally] = {}
    target = _Tally(name=business_name, first_seen=-1)
    sequence = 0

    for result in recommendations:
        ordered: List[Optional[str]] = list(result.competitors)
        if result.mentioned:
            slot = result.rank - 1 if result.rank is not None else len(ordered)
            ordered.insert(min(slot, len(ordered)), None)

        seen_here = set()
        for position, name in enumerate(ordered, start=1):
            if name is None:
                target.count += 1
                target.positions.append(position)
                if target.first_seen < 0:
                    target.first_seen = sequence
                sequence += 1
                continue
            key = name.strip().lower()
            if not key or key in seen_here:
                continue
            seen_here.add(key)
            tally = tallies.get(key)
            if tally is None:
                tally = tallies[key] = _Tally(name=name.strip(), first_seen=sequence)
            tally.count += 1
            tally.positions.append(position)
            if result.mentioned:
                tally.with_target += 1
            sequence += 1

    entries = list(tallies.values())
    if target.count:
        entries.append(target)
    entries.sort(key=lambda t: (-t.count, t.first_seen))

    total_mentions = sum(t.count for t in entries)
    denominator = max(len(recommendations), total_mentions, 1)

    def entry(tally: _Tally, rank: Optional[int], is_target: bool) -> LeaderboardEntry:
        return LeaderboardEntry(
            name=tally.name,
            rank=rank,
            mention_count=tally.count,
            market_share=round(tally.count / denominator, 4),
            avg_position=tally.avg_position,
            appears_with_target=tally.with_target if not is_target else tally.count,
            is_target=is_target,
        )

    competitors: List[LeaderboardEntry] = []
    target_entry = entry(target, None, True)
    for rank, tally in enumerate(entries, start=1):
        if tally is target:
            target_entry = entry(target, rank, True)
        elif len(competitors) < MAX_LEADERBOARD_COMPETITORS:
            competitors.append(entry(tally, rank, False))

    return CompetitiveLeaderboard(
        target=target_entry,
        competitors=competitors,
        market_position=market_position(target_entry, entries[0].count if entries else 0),
        recommendation_successes=len(recommendations),
    )


def market_position(target: LeaderboardEntry, top_count: int) -> MarketPosition:
    if target.mention_count == 0 or target.rank is None:
        return MarketPosition.UNKNOWN
    if target.rank == 1:
        return MarketPosition.LEADING
    if top_count - target.mention_count <= 1:
        return MarketPosition.COMPETITIVE
    return MarketPosition.EMERGING


def overall_confidence(results: Sequence[FingerprintResult]) -> float:
    successes = [r for r in results if r.succeeded]
    if not successes:
        return 0.0
    return round(sum(r.confidence for r in successes) / len(successes), 4)


def build_analysis(
    run_id: str,
    business_id: str,
    business_name: str,
    results: Sequence[FingerprintResult],
) -> FingerprintAnalysis:
    """Aggregate one run's results into an immutable analysis."""
    rate = mention_rate(results)
    sentiment = sentiment_score(results)
    avg = average_rank(results)
    return FingerprintAnalysis(
        run_id=run_id,
        business_id=business_id,
        business_name=business_name,
        visibility_score=visibility_score(rate, sentiment, avg),
        mention_rate=round(rate, 4),
        sentiment_score=round(sentiment, 4),
        avg_rank=round(avg, 2) if avg is not None else None,
        overall_confidence=overall_confidence(results),
        leaderboard=build_leaderboard(results, business_name),
        results=list(results),
        success_count=sum(1 for r in results if r.succeeded),
        total_calls=len(results),
    )


def visibility_trend(history: Sequence[FingerprintAnalysis]) -> VisibilityTrend:
    """Compare the two most recent analyses; differences under 5 points are stable."""
    if len(history) < 2:
        return VisibilityTrend.STABLE
    ordered = sorted(history, key=lambda a: a.created_at)
    delta = ordered[-1].visibility_score - ordered[-2].visibility_score
    if delta >= TREND_THRESHOLD:
        return VisibilityTrend.IMPROVING
    if delta <= -TREND_THRESHOLD:
        return VisibilityTrend.DECLINING
    return VisibilityTrend.STABLE
