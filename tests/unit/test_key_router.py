"""Unit tests for the key quota router.

Tests cover:
- discover_env_credentials() ordering by numeric suffix and single-key fallback
- select_index() scanning from the cursor, wrapping once, and its two failures
- select_credential() moving the cursor to the selected key
- record_usage() incrementing by one and persisting
- maybe_roll_period() zeroing counts, updating the marker, keeping the cursor
- per-request rollover when the clock crosses a month boundary
- reconciliation of persisted state with the pool size on load
- persistence failures being non-fatal
- reservations keeping concurrent selections under the cap
- lease() recording on success and releasing on error

All tests use the in-memory ledger store; no file I/O.
"""

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime

import pytest

from page_relay.core.exceptions import (
    CredentialError,
    NoCredentialsConfiguredError,
    QuotaExhaustedError,
)
from page_relay.core.key_router import (
    Credential,
    KeyQuotaRouter,
    current_period,
    discover_env_credentials,
    select_index,
)
from page_relay.core.ledger_store import LedgerState, MemoryLedgerStore


class _FailingStore(MemoryLedgerStore):
    """Loads normally but every save fails."""

    def save(self, state: LedgerState) -> bool:
        self.save_count += 1
        return False


class _ThreadRecordingStore(MemoryLedgerStore):
    """Remembers which thread each save ran on."""

    def __init__(self) -> None:
        super().__init__()
        self.save_threads: list[int] = []

    def save(self, state: LedgerState) -> bool:
        self.save_threads.append(threading.get_ident())
        return super().save(state)


# ---------------------------------------------------------------------------
# discover_env_credentials
# ---------------------------------------------------------------------------


class TestDiscoverEnvCredentials:
    def test_numbered_keys_sorted_by_integer_suffix(self) -> None:
        env = {
            "SCRAPER_API_KEY_10": "ten",
            "SCRAPER_API_KEY_2": "two",
            "SCRAPER_API_KEY_1": "one",
            "SCRAPER_API_KEY_9": "nine",
        }
        assert discover_env_credentials(env) == ("one", "two", "nine", "ten")

    def test_gaps_are_allowed(self) -> None:
        env = {"SCRAPER_API_KEY_1": "a", "SCRAPER_API_KEY_3": "c"}
        assert discover_env_credentials(env) == ("a", "c")

    def test_blank_values_are_skipped(self) -> None:
        env = {"SCRAPER_API_KEY_1": "  ", "SCRAPER_API_KEY_2": "b"}
        assert discover_env_credentials(env) == ("b",)

    def test_single_key_used_when_no_numbered_keys(self) -> None:
        assert discover_env_credentials({"SCRAPER_API_KEY": " solo "}) == ("solo",)

    def test_numbered_keys_take_precedence_over_single_key(self) -> None:
        env = {"SCRAPER_API_KEY": "solo", "SCRAPER_API_KEY_1": "one"}
        assert discover_env_credentials(env) == ("one",)

    def test_unrelated_names_ignored(self) -> None:
        env = {"SCRAPER_API_KEY_X": "nope", "OTHER_API_KEY_1": "nope"}
        assert discover_env_credentials(env) == ()


# ---------------------------------------------------------------------------
# select_index (pure)
# ---------------------------------------------------------------------------


class TestSelectIndex:
    def test_returns_cursor_when_under_cap(self) -> None:
        assert select_index([0, 0, 0], cursor=1, cap=10) == 1

    def test_skips_exhausted_and_wraps(self) -> None:
        assert select_index([3, 10, 10], cursor=1, cap=10) == 0

    def test_scans_forward_from_cursor(self) -> None:
        assert select_index([0, 10, 5], cursor=1, cap=10) == 2

    def test_out_of_range_cursor_starts_at_zero(self) -> None:
        assert select_index([10, 0], cursor=7, cap=10) == 1

    def test_empty_pool_raises_no_credentials(self) -> None:
        with pytest.raises(NoCredentialsConfiguredError):
            select_index([], cursor=0, cap=10)

    def test_all_at_cap_raises_quota_exhausted(self) -> None:
        with pytest.raises(QuotaExhaustedError) as excinfo:
            select_index([10, 11], cursor=0, cap=10)
        assert excinfo.value.pool_size == 2
        assert "quota" in str(excinfo.value).lower()

    def test_errors_are_distinct_credential_errors(self) -> None:
        assert issubclass(QuotaExhaustedError, CredentialError)
        assert issubclass(NoCredentialsConfiguredError, CredentialError)
        assert not issubclass(QuotaExhaustedError, NoCredentialsConfiguredError)


def test_current_period_is_zero_based() -> None:
    assert current_period(datetime(2026, 1, 5, tzinfo=UTC)) == 0
    assert current_period(datetime(2026, 12, 31, tzinfo=UTC)) == 11


# ---------------------------------------------------------------------------
# KeyQuotaRouter
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestSelectAndRecord:
    async def test_fresh_ledger_is_zeroed(self, make_router) -> None:
        router = make_router(("a", "b"))
        assert router.state.usage_counts == [0, 0]
        assert router.state.current_index == 0

    async def test_cursor_moves_to_selected_index(self, make_router) -> None:
        router = make_router(("a", "b", "c"), cap=5, counts=[5, 5, 0], cursor=0)
        credential = await router.select_credential()
        assert credential == Credential(index=2, key="c")
        assert router.state.current_index == 2

    async def test_repeated_selection_stays_on_last_used_key(self, make_router) -> None:
        router = make_router(("a", "b"), cap=5, counts=[0, 0], cursor=1)
        first = await router.select_credential()
        await router.record_usage(first.index)
        second = await router.select_credential()
        assert first.index == second.index == 1

    async def test_record_usage_increments_by_one_and_persists(
        self, make_router, memory_store
    ) -> None:
        router = make_router(("a", "b"))
        credential = await router.select_credential()
        saved = await router.record_usage(credential.index)

        assert saved is True
        assert router.state.usage_counts == [1, 0]
        assert memory_store.state is not None
        assert memory_store.state.usage_counts == [1, 0]

    async def test_empty_pool_always_fails_with_no_credentials(self, make_router) -> None:
        router = make_router(())
        for _ in range(3):
            with pytest.raises(NoCredentialsConfiguredError):
                await router.select_credential()

    async def test_pool_of_n_serves_at_most_n_times_cap(self, make_router) -> None:
        router = make_router(("a", "b", "c"), cap=4)
        served = {0: 0, 1: 0, 2: 0}
        for _ in range(12):
            credential = await router.select_credential()
            await router.record_usage(credential.index)
            served[credential.index] += 1

        assert served == {0: 4, 1: 4, 2: 4}
        with pytest.raises(QuotaExhaustedError):
            await router.select_credential()

    async def test_persistence_failure_is_not_fatal(self, clock) -> None:
        store = _FailingStore()
        router = KeyQuotaRouter(("a",), store, cap=10, clock=clock)
        credential = await router.select_credential()
        saved = await router.record_usage(credential.index)

        assert saved is False
        assert router.state.usage_counts == [1]

    async def test_snapshot_never_contains_keys(self, make_router) -> None:
        router = make_router(("secret-key-1", "secret-key-2"))
        snapshot = router.snapshot()
        assert snapshot["pool_size"] == 2
        assert "secret-key-1" not in repr(snapshot)


class TestPeriodRollover:
    def test_rollover_zeroes_counts_and_keeps_cursor(self, make_router, memory_store) -> None:
        router = make_router(("a", "b"), counts=[7, 3], cursor=1)
        rolled = router.maybe_roll_period(10)

        assert rolled is True
        state = router.state
        assert state.usage_counts == [0, 0]
        assert state.last_reset_month == 10
        assert state.current_index == 1
        assert memory_store.state is not None
        assert memory_store.state.last_reset_month == 10

    def test_same_period_is_a_no_op(self, make_router) -> None:
        router = make_router(("a",), counts=[7])
        assert router.maybe_roll_period(9) is False
        assert router.state.usage_counts == [7]

    def test_stale_period_resets_on_startup(self, clock) -> None:
        store = MemoryLedgerStore(
            LedgerState(current_index=0, usage_counts=[500], last_reset_month=3)
        )
        router = KeyQuotaRouter(("a",), store, clock=clock)
        assert router.state.usage_counts == [0]
        assert router.state.last_reset_month == 9

    @pytest.mark.asyncio
    async def test_rollover_is_checked_per_request(self, memory_store) -> None:
        now = {"value": datetime(2026, 10, 31, 23, 59, tzinfo=UTC)}
        router = KeyQuotaRouter(("a",), memory_store, cap=1, clock=lambda: now["value"])
        credential = await router.select_credential()
        await router.record_usage(credential.index)
        with pytest.raises(QuotaExhaustedError):
            await router.select_credential()

        now["value"] = datetime(2026, 11, 1, 0, 1, tzinfo=UTC)
        credential = await router.select_credential()
        assert credential.index == 0
        assert router.state.last_reset_month == 10


class TestLoadReconciliation:
    def test_counts_padded_when_pool_grew(self, make_router) -> None:
        router = make_router(("a", "b", "c"), counts=[4])
        assert router.state.usage_counts == [4, 0, 0]

    def test_counts_truncated_when_pool_shrank(self, make_router) -> None:
        router = make_router(("a",), counts=[4, 5, 6])
        assert router.state.usage_counts == [4]

    def test_out_of_range_cursor_reset(self, make_router) -> None:
        router = make_router(("a", "b"), counts=[0, 0], cursor=5)
        assert router.state.current_index == 0


@pytest.mark.asyncio
class TestConcurrency:
    async def test_concurrent_selections_never_exceed_cap(self, make_router) -> None:
        router = make_router(("a", "b"), cap=3)

        async def _attempt() -> int | None:
            try:
                credential = await router.select_credential()
            except QuotaExhaustedError:
                return None
            await asyncio.sleep(0)
            await router.record_usage(credential.index)
            return credential.index

        outcomes = await asyncio.gather(*(_attempt() for _ in range(10)))
        served = [index for index in outcomes if index is not None]

        assert len(served) == 6
        assert served.count(0) == 3
        assert served.count(1) == 3
        assert router.state.usage_counts == [3, 3]

    async def test_lease_records_usage_on_success(self, make_router) -> None:
        router = make_router(("a",), cap=2)
        async with router.lease() as credential:
            assert credential.key == "a"
        assert router.state.usage_counts == [1]
        assert router.snapshot()["in_flight"] == [0]

    async def test_lease_releases_reservation_on_error(self, make_router) -> None:
        router = make_router(("a",), cap=1)
        with pytest.raises(RuntimeError):
            async with router.lease():
                raise RuntimeError("upstream down")

        assert router.state.usage_counts == [0]
        # The released slot is selectable again.
        credential = await router.select_credential()
        assert credential.index == 0

    async def test_usage_saved_from_a_worker_thread(self, make_router) -> None:
        store = _ThreadRecordingStore()
        router = make_router(("a",), store=store)
        async with router.lease():
            pass

        assert len(store.save_threads) == 1
        assert threading.get_ident() not in store.save_threads
        assert store.state is not None
        assert store.state.usage_counts == [1]

    async def test_saved_ledger_ends_at_latest_counts(self, make_router, memory_store) -> None:
        router = make_router(("a", "b"), cap=50)

        async def _one() -> None:
            async with router.lease():
                await asyncio.sleep(0)

        await asyncio.gather(*(_one() for _ in range(20)))

        assert sum(router.state.usage_counts) == 20
        assert memory_store.state is not None
        assert memory_store.state.usage_counts == router.state.usage_counts
