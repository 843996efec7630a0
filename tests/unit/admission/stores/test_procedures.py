"""Unit tests for admission procedure arithmetic and reply parsing."""

import pytest

from tollgate.admission.exceptions import StoreUnavailableError
from tollgate.admission.stores.base import (
    Procedure,
    ProcedureArgs,
    ProcedureReply,
    ReplyCode,
)
from tollgate.admission.stores.procedures import SCRIPTS, bucket_step, window_step


class TestWindowStep:
    """Tests for sliding window evaluation."""

    def test_empty_window_allows(self) -> None:
        reply, live = window_step([], now_ms=1000, limit=3, window_ms=1000)
        assert reply == ProcedureReply(ReplyCode.ALLOW, 2, 0)
        assert live == []

    def test_full_window_rate_limits_until_oldest_expires(self) -> None:
        reply, _ = window_step([1000, 1200, 1400], now_ms=1500, limit=3, window_ms=1000)
        assert reply.code == ReplyCode.RATE_LIMITED
        assert reply.remaining == 0
        assert reply.retry_after_ms == 500

    def test_entries_at_window_edge_are_pruned(self) -> None:
        reply, live = window_step([1000, 1500], now_ms=2000, limit=2, window_ms=1000)
        assert reply.code == ReplyCode.ALLOW
        assert live == [1500]

    def test_live_scores_are_sorted(self) -> None:
        _, live = window_step([1900, 1100, 1500], now_ms=2000, limit=5, window_ms=1000)
        assert live == [1100, 1500, 1900]

    def test_remaining_counts_this_admission(self) -> None:
        reply, _ = window_step([1900], now_ms=2000, limit=2, window_ms=1000)
        assert reply.remaining == 0


class TestBucketStep:
    """Tests for token bucket evaluation."""

    def test_new_bucket_starts_full(self) -> None:
        reply, tokens, last = bucket_step(None, None, now_ms=1000, capacity=3, period_ms=500)
        assert reply == ProcedureReply(ReplyCode.ALLOW, 2, 0)
        assert tokens == 2.0
        assert last == 1000.0

    def test_empty_bucket_rate_limits(self) -> None:
        reply, tokens, _ = bucket_step(0.0, 1000.0, now_ms=1000, capacity=3, period_ms=500)
        assert reply.code == ReplyCode.RATE_LIMITED
        assert reply.retry_after_ms == 500
        assert tokens == 0.0

    def test_partial_refill_shortens_retry(self) -> None:
        reply, tokens, _ = bucket_step(0.0, 1000.0, now_ms=1250, capacity=3, period_ms=500)
        assert reply.code == ReplyCode.RATE_LIMITED
        assert tokens == 0.5
        assert reply.retry_after_ms == 250

    def test_refill_allows_after_one_period(self) -> None:
        reply, tokens, last = bucket_step(0.0, 1000.0, now_ms=1500, capacity=3, period_ms=500)
        assert reply.code == ReplyCode.ALLOW
        assert tokens == 0.0
        assert last == 1500.0

    def test_refill_is_capped_at_capacity(self) -> None:
        reply, tokens, _ = bucket_step(1.0, 0.0, now_ms=60_000, capacity=3, period_ms=500)
        assert reply.remaining == 2
        assert tokens == 2.0

    def test_time_never_runs_backwards(self) -> None:
        reply, tokens, last = bucket_step(0.0, 2000.0, now_ms=1000, capacity=3, period_ms=500)
        assert reply.code == ReplyCode.RATE_LIMITED
        assert tokens == 0.0
        assert last == 2000.0


class TestProcedureReply:
    """Tests for parsing raw script replies."""

    def test_from_raw(self) -> None:
        assert ProcedureReply.from_raw([2, 0, 350]) == ProcedureReply(
            ReplyCode.RATE_LIMITED, 0, 350
        )

    def test_negative_remaining_means_unknown(self) -> None:
        assert ProcedureReply.from_raw([1, -1, 0]).remaining is None

    def test_bytes_values_parse(self) -> None:
        assert ProcedureReply.from_raw([b"0", b"4", b"0"]).remaining == 4

    @pytest.mark.parametrize("raw", [None, "OK", [0, 1], [9, 0, 0], ["x", 0, 0]])
    def test_malformed_reply_raises(self, raw: object) -> None:
        with pytest.raises(StoreUnavailableError):
            ProcedureReply.from_raw(raw)


class TestProcedureArgs:
    """Tests for script argument rendering."""

    def test_as_argv(self) -> None:
        args = ProcedureArgs(
            now_ms=1000,
            dedup_ttl_ms=5000,
            limit=5,
            period_ms=1000,
            state_ttl_ms=2000,
            member="m1",
        )
        assert args.as_argv() == [1000, 5000, 5, 1000, 2000, "m1"]

    def test_missing_now_is_empty_string(self) -> None:
        args = ProcedureArgs(None, 5000, 5, 1000, 2000, "m1")
        assert args.as_argv()[0] == ""


def test_every_procedure_has_a_script() -> None:
    assert set(SCRIPTS) == set(Procedure)
