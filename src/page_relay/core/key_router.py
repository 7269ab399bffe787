"""Quota-aware rotation across a pool of scrape-service API keys.

Every credential may serve at most ``cap`` successful requests per calendar
month.  Selection scans the pool from the cursor (the most recently used
key), wrapping around exactly once, and picks the first key still under the
cap.  The cursor then moves to the chosen key, so load spreads across the
pool instead of draining key 0 first.

Ledger state (cursor, per-key counts, last reset month) lives in one
:class:`KeyQuotaRouter` instance and is persisted through an injected
:class:`~page_relay.core.ledger_store.LedgerStore` after every increment and
every monthly reset.  Persistence is best-effort: a failed write is logged
and the request carries on.

Concurrency
-----------
All ledger mutations run under one :class:`asyncio.Lock`.  The upstream
fetch happens *between* selection and recording, so the lock cannot be held
across it.  Instead, :meth:`KeyQuotaRouter.select_credential` reserves a
slot on the chosen key; reservations count against the cap until
:meth:`~KeyQuotaRouter.record_usage` turns them into recorded usage or
:meth:`~KeyQuotaRouter.release` drops them.  Two concurrent requests can
therefore never both take the last slot of a nearly exhausted key.

Usage::

    router = KeyQuotaRouter(pool, JsonFileLedgerStore("scraper_usage.json"))
    async with router.lease() as credential:
        response = await fetch_via_service(url, api_key=credential.key, ...)
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from page_relay.core.exceptions import NoCredentialsConfiguredError, QuotaExhaustedError
from page_relay.core.ledger_store import LedgerState, LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_CAP: int = 1000
"""Requests per credential per calendar month."""

CREDENTIAL_ENV_PREFIX: str = "SCRAPER_API_KEY"


# ---------------------------------------------------------------------------
# Credential discovery
# ---------------------------------------------------------------------------


def discover_env_credentials(
    env: Mapping[str, str] | None = None,
    prefix: str = CREDENTIAL_ENV_PREFIX,
) -> tuple[str, ...]:
    """Return the credential pool defined in the environment.

    Numbered entries (``{prefix}_1``, ``{prefix}_2``, ...) are ordered by
    the integer value of their suffix, so ``_10`` follows ``_9``.  Gaps are
    allowed.  When no numbered entry exists, the bare ``{prefix}`` entry (if
    non-empty) forms a one-element pool.

    Args:
        env: Mapping to search.  Defaults to ``os.environ``.
        prefix: Variable-name prefix.

    Returns:
        Ordered tuple of credential strings, possibly empty.
    """
    source = os.environ if env is None else env
    pattern = re.compile(rf"^{re.escape(prefix)}_(\d+)$")

    numbered: list[tuple[int, str]] = []
    for name, value in source.items():
        match = pattern.match(name)
        if match and value and value.strip():
            numbered.append((int(match.group(1)), value.strip()))

    if numbered:
        numbered.sort(key=lambda item: item[0])
        return tuple(value for _, value in numbered)

    single = (source.get(prefix) or "").strip()
    return (single,) if single else ()


# ---------------------------------------------------------------------------
# Pure selection
# ---------------------------------------------------------------------------


def select_index(counts: Sequence[int], cursor: int, cap: int) -> int:
    """Return the index of the first credential under *cap*, scanning from *cursor*.

    The scan visits every index exactly once: ``cursor, cursor + 1, ...``
    wrapping past the end of the pool.  An out-of-range cursor starts the
    scan at 0.

    Args:
        counts: Usage per credential (including any in-flight reservations).
        cursor: Index at which the scan starts.
        cap: Exclusive upper bound on usage.

    Returns:
        The selected index.

    Raises:
        NoCredentialsConfiguredError: If *counts* is empty.
        QuotaExhaustedError: If every credential is at or above *cap*.
    """
    size = len(counts)
    if size == 0:
        raise NoCredentialsConfiguredError()

    start = cursor if 0 <= cursor < size else 0
    for offset in range(size):
        index = (start + offset) % size
        if counts[index] < cap:
            return index
    raise QuotaExhaustedError(pool_size=size, cap=cap)


def current_period(now: datetime | None = None) -> int:
    """Return the zero-based month (January = 0) of *now* in UTC."""
    moment = now if now is not None else datetime.now(tz=UTC)
    return moment.month - 1


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Credential:
    """A selected credential.  The key itself is kept out of ``repr``."""

    index: int
    key: str = field(repr=False)


class KeyQuotaRouter:
    """Owns the credential pool and its usage ledger.

    Args:
        pool: Ordered credential strings.  Order defines rotation order.
        store: Persistence capability for the ledger.
        cap: Maximum successful requests per credential per period.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        pool: Sequence[str],
        store: LedgerStore,
        *,
        cap: int = DEFAULT_MONTHLY_CAP,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._pool: tuple[str, ...] = tuple(pool)
        self._store = store
        self._cap = cap
        self._clock = clock or (lambda: datetime.now(tz=UTC))
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._reserved: list[int] = [0] * len(self._pool)
        self._state = self._load_state()
        self.maybe_roll_period(current_period(self._clock()))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def pool_size(self) -> int:
        return len(self._pool)

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def state(self) -> LedgerState:
        """A copy of the current ledger state."""
        return LedgerState.from_document(self._state.to_document())

    # ------------------------------------------------------------------
    # Loading & persistence
    # ------------------------------------------------------------------

    def _load_state(self) -> LedgerState:
        """Load persisted state and reconcile it with the current pool size."""
        size = len(self._pool)
        loaded = self._store.load()
        if loaded is None:
            return LedgerState(
                current_index=0,
                usage_counts=[0] * size,
                last_reset_month=current_period(self._clock()),
            )

        counts = list(loaded.usage_counts)
        if len(counts) != size:
            logger.warning(
                "ledger: persisted counts cover %d key(s) but pool has %d; adjusting",
                len(counts),
                size,
            )
            counts = (counts + [0] * size)[:size]

        cursor = loaded.current_index
        if size and not 0 <= cursor < size:
            logger.warning("ledger: persisted cursor %d out of range, resetting to 0", cursor)
            cursor = 0
        elif not size:
            cursor = 0

        return LedgerState(
            current_index=cursor,
            usage_counts=counts,
            last_reset_month=loaded.last_reset_month,
        )

    def _persist(self) -> bool:
        return self._report_save(self._store.save(self._state))

    async def _persist_off_loop(self) -> bool:
        """Persist the latest state from a worker thread.

        Saves are serialized so an older copy never overwrites a newer one;
        the copy is taken under the state lock once it is this save's turn.
        """
        async with self._save_lock:
            async with self._lock:
                copy = self.state
            saved = await asyncio.to_thread(self._store.save, copy)
        return self._report_save(saved)

    @staticmethod
    def _report_save(saved: bool) -> bool:
        if not saved:
            logger.warning("ledger: state not persisted; in-memory counts remain authoritative")
        return saved

    # ------------------------------------------------------------------
    # Period rollover
    # ------------------------------------------------------------------

    def maybe_roll_period(self, now_period: int) -> bool:
        """Zero all usage counts when *now_period* differs from the stored period.

        The cursor is left untouched.  Evaluated at construction and again
        before every selection.

        Args:
            now_period: Zero-based month to compare against.

        Returns:
            ``True`` if a reset happened.
        """
        if now_period == self._state.last_reset_month:
            return False
        logger.info(
            "ledger: period rolled from month %d to %d, resetting usage counts",
            self._state.last_reset_month,
            now_period,
        )
        self._state.usage_counts = [0] * len(self._pool)
        self._state.last_reset_month = now_period
        self._persist()
        return True

    # ------------------------------------------------------------------
    # Selection & accounting
    # ------------------------------------------------------------------

    async def select_credential(self) -> Credential:
        """Reserve and return the next credential under the cap.

        Raises:
            NoCredentialsConfiguredError: If the pool is empty.
            QuotaExhaustedError: If every credential is at the cap.
        """
        async with self._lock:
            self.maybe_roll_period(current_period(self._clock()))
            effective = [
                used + reserved
                for used, reserved in zip(self._state.usage_counts, self._reserved)
            ]
            index = select_index(effective, self._state.current_index, self._cap)
            self._state.current_index = index
            self._reserved[index] += 1
            logger.debug(
                "ledger: selected key #%d (%d/%d used)",
                index,
                self._state.usage_counts[index],
                self._cap,
            )
            return Credential(index=index, key=self._pool[index])

    async def record_usage(self, index: int) -> bool:
        """Count one successful request against credential *index* and persist.

        Consumes the reservation made by :meth:`select_credential`, if any.

        Returns:
            ``True`` if the ledger was persisted.  ``False`` is informational;
            the in-memory increment always happens.
        """
        async with self._lock:
            if self._reserved[index] > 0:
                self._reserved[index] -= 1
            self._state.usage_counts[index] += 1
        return await self._persist_off_loop()

    async def release(self, index: int) -> None:
        """Drop a reservation without counting usage (the fetch failed)."""
        async with self._lock:
            if self._reserved[index] > 0:
                self._reserved[index] -= 1

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[Credential]:
        """Select a credential, record usage on success, release it on error."""
        credential = await self.select_credential()
        try:
            yield credential
        except BaseException:
            await self.release(credential.index)
            raise
        await self.record_usage(credential.index)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-friendly view of the ledger.  Never includes key material."""
        return {
            "pool_size": len(self._pool),
            "cap": self._cap,
            "current_index": self._state.current_index,
            "usage_counts": list(self._state.usage_counts),
            "in_flight": list(self._reserved),
            "last_reset_month": self._state.last_reset_month,
        }
