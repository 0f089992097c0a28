"""Tests for the business, crawl and fingerprint stores."""

from datetime import timedelta

import pytest

from cfp.core.exceptions import BusinessNotFoundError
from cfp.core.models import (
    BusinessStatus,
    CompetitiveLeaderboard,
    FingerprintAnalysis,
    LeaderboardEntry,
    VisibilityTrend,
    utcnow,
)
from cfp.data.repository import BusinessRepository, CrawledDataStore, FingerprintStore
from fakes import make_business, make_crawled


def analysis(run_id: str, score: int, minutes_ago: int = 0) -> FingerprintAnalysis:
    target = LeaderboardEntry(name="Acme Plumbing", mention_count=0, market_share=0.0, is_target=True)
    return FingerprintAnalysis(
        run_id=run_id,
        business_id="biz-1",
        business_name="Acme Plumbing",
        visibility_score=score,
        mention_rate=0.5,
        sentiment_score=0.0,
        leaderboard=CompetitiveLeaderboard(target=target),
        success_count=9,
        total_calls=9,
        created_at=utcnow() - timedelta(minutes=minutes_ago),
    )


class TestBusinessRepository:
    def test_get_unknown_raises(self):
        with pytest.raises(BusinessNotFoundError):
            BusinessRepository().get("missing")

    def test_compare_and_set_applies_when_expected_matches(self):
        repo = BusinessRepository()
        repo.add(make_business())

        assert repo.compare_and_set_status("biz-1", BusinessStatus.PENDING, BusinessStatus.CRAWLING, pipeline_attempts=1)
        business = repo.get("biz-1")
        assert business.status == BusinessStatus.CRAWLING
        assert business.pipeline_attempts == 1
        assert repo.status_writes == 1

    def test_compare_and_set_rejects_stale_expectation(self):
        repo = BusinessRepository()
        repo.add(make_business(status=BusinessStatus.FINGERPRINTED))

        assert not repo.compare_and_set_status(
            "biz-1", BusinessStatus.CRAWLING, BusinessStatus.CRAWLED
        )
        assert repo.get("biz-1").status == BusinessStatus.FINGERPRINTED
        assert repo.status_writes == 0

    def test_compare_and_set_accepts_any_of_several_statuses(self):
        repo = BusinessRepository()
        repo.add(make_business(status=BusinessStatus.GENERATING))

        assert repo.compare_and_set_status(
            "biz-1",
            [BusinessStatus.CRAWLING, BusinessStatus.CRAWLED, BusinessStatus.GENERATING],
            BusinessStatus.ERROR,
            error_message="boom",
        )
        assert repo.get("biz-1").error_message == "boom"

    def test_state_file_round_trip(self, tmp_path):
        path = tmp_path / "state" / "businesses.json"
        repo = BusinessRepository(path)
        repo.add(make_business())
        repo.compare_and_set_status("biz-1", "pending", "crawling")

        reloaded = BusinessRepository(path)
        assert reloaded.get("biz-1").status == BusinessStatus.CRAWLING
        assert [b.id for b in reloaded.list()] == ["biz-1"]


class TestCrawledDataStore:
    def test_latest_crawl_wins(self, tmp_path):
        store = CrawledDataStore(tmp_path / "crawled.json")
        store.save("biz-1", make_crawled(phone="1"))
        store.save("biz-1", make_crawled(phone="2"))

        assert CrawledDataStore(tmp_path / "crawled.json").get("biz-1").phone == "2"
        assert store.get("other") is None


class TestFingerprintStore:
    def test_save_is_idempotent_per_run(self):
        store = FingerprintStore()
        store.save(analysis("run-1", 50))
        store.save(analysis("run-1", 50))

        assert len(store.history("biz-1")) == 1
        assert store.latest("biz-1").run_id == "run-1"

    def test_latest_and_history(self, tmp_path):
        path = tmp_path / "fingerprints.json"
        store = FingerprintStore(path)
        store.save(analysis("run-1", 40, minutes_ago=10))
        store.save(analysis("run-2", 48))

        reloaded = FingerprintStore(path)
        assert reloaded.latest("biz-1").run_id == "run-2"
        assert [a.run_id for a in reloaded.history("biz-1")] == ["run-1", "run-2"]
        assert reloaded.latest("nobody") is None

    @pytest.mark.parametrize(
        "previous, current, expected",
        [
            (40, 45, VisibilityTrend.IMPROVING),
            (45, 40, VisibilityTrend.DECLINING),
            (40, 44, VisibilityTrend.STABLE),
            (44, 40, VisibilityTrend.STABLE),
        ],
    )
    def test_trend_uses_five_point_threshold(self, previous, current, expected):
        store = FingerprintStore()
        store.save(analysis("old", previous, minutes_ago=5))
        store.save(analysis("new", current))
        assert store.trend("biz-1") == expected

    def test_single_run_is_stable(self):
        store = FingerprintStore()
        store.save(analysis("only", 70))
        assert store.trend("biz-1") == VisibilityTrend.STABLE
