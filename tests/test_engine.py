"""Tests for the concurrent fingerprint engine."""

from unittest.mock import AsyncMock

import pytest

from cfp.core.config import LLMConfig
from cfp.core.exceptions import LLMProviderError, NoSuccessfulResponsesError
from cfp.core.models import MarketPosition, PromptCategory
from cfp.data.llm_client import LLMResponse
from cfp.fingerprint.engine import FingerprintEngine
from fakes import FAST_POLICIES, MODELS, ScriptedLLM, make_business, make_crawled, run


def make_engine(llm, max_concurrency=3, models=MODELS):
    config = LLMConfig(models=list(models), max_concurrency=max_concurrency)
    return FingerprintEngine(llm, config, retry_policy=FAST_POLICIES.llm)


class TestFingerprintEngine:
    def test_full_run_matches_expected_visibility(self):
        llm = ScriptedLLM()
        analysis = run(make_engine(llm).run(make_business(), make_crawled()))

        assert analysis.total_calls == 9
        assert analysis.success_count == 9
        assert llm.fingerprint_calls == 9
        assert analysis.mention_rate == pytest.approx(6 / 9, abs=1e-4)
        assert analysis.avg_rank == 2.0
        assert analysis.visibility_score == 76

        board = analysis.leaderboard
        assert board.target.rank == 1
        assert board.target.mention_count == 3
        assert board.market_position == MarketPosition.LEADING
        assert {c.name for c in board.competitors} >= {"Bolt Plumbing", "Clear Drain Co"}
        assert board.total_share <= 1.0 + 1e-9

    def test_every_model_gets_every_category(self):
        analysis = run(make_engine(ScriptedLLM()).run(make_business(), make_crawled()))

        pairs = {(r.model, r.category) for r in analysis.results}
        assert len(pairs) == 9
        assert {category for _, category in pairs} == set(PromptCategory)

    def test_partial_failure_is_tolerated(self):
        llm = ScriptedLLM(failing_models=(MODELS[0],))
        analysis = run(make_engine(llm).run(make_business(), make_crawled()))

        assert analysis.total_calls == 9
        assert analysis.success_count == 6
        failed = [r for r in analysis.results if not r.succeeded]
        assert {r.model for r in failed} == {MODELS[0]}
        assert all("retries exhausted" in r.error for r in failed)
        # Each failing call was retried once
        assert llm.calls.count(MODELS[0]) == 6

    def test_all_calls_failing_is_a_hard_failure(self):
        llm = ScriptedLLM(fail_with=lambda: LLMProviderError("upstream down", status_code=503))

        with pytest.raises(NoSuccessfulResponsesError) as exc_info:
            run(make_engine(llm).run(make_business(), make_crawled()))
        assert exc_info.value.transient
        assert len(exc_info.value.details["errors"]) == 5

    def test_permanent_errors_are_not_retried(self):
        llm = ScriptedLLM(fail_with=lambda: LLMProviderError("unknown model", status_code=400))

        with pytest.raises(NoSuccessfulResponsesError):
            run(make_engine(llm).run(make_business(), make_crawled()))
        assert len(llm.calls) == 9

    @pytest.mark.parametrize("limit", [1, 2, 4])
    def test_parallelism_is_bounded(self, limit):
        llm = ScriptedLLM(delay=0.01)
        run(make_engine(llm, max_concurrency=limit).run(make_business(), make_crawled()))

        assert llm.max_in_flight <= limit
        assert llm.max_in_flight == limit

    def test_provisional_run_without_crawled_data(self):
        analysis = run(make_engine(ScriptedLLM()).run(make_business(), None))
        assert analysis.success_count == 9
        assert analysis.business_id == "biz-1"

    def test_single_model(self):
        analysis = run(make_engine(ScriptedLLM(), models=MODELS[:1]).run(make_business(), make_crawled()))
        assert analysis.total_calls == 3

    def test_call_parameters_per_category(self):
        client = AsyncMock()
        client.complete.return_value = LLMResponse(text="No idea.", model="m", tokens_used=3)
        config = LLMConfig(models=["only/model"], max_concurrency=1, max_tokens=512)
        engine = FingerprintEngine(client, config, retry_policy=FAST_POLICIES.llm)

        analysis = run(engine.run(make_business(), make_crawled()))

        temperatures = sorted(call.kwargs["temperature"] for call in client.complete.call_args_list)
        assert temperatures == [0.3, 0.5, 0.7]
        assert all(call.kwargs["max_tokens"] == 512 for call in client.complete.call_args_list)
        assert analysis.mention_rate == 0.0
        assert analysis.leaderboard.market_position == MarketPosition.UNKNOWN
