"""Persistence backends for the credential usage ledger.

The ledger is a small JSON document::

    {"currentKeyIndex": 0, "usageCounts": [12, 0], "lastResetMonth": 9}

``lastResetMonth`` is zero-based (January = 0).  Stores never raise on I/O
problems: :meth:`LedgerStore.load` returns ``None`` when nothing usable is
stored and :meth:`LedgerStore.save` returns ``False`` when the write failed.
Callers decide how loud to be about it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass
class LedgerState:
    """In-memory form of the persisted ledger document.

    Attributes:
        current_index: Cursor pointing at the most recently selected credential.
        usage_counts: Successful requests per credential in the current period.
        last_reset_month: Zero-based month in which the counts were last zeroed.
    """

    current_index: int = 0
    usage_counts: list[int] = field(default_factory=list)
    last_reset_month: int = 0

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-serialisable persisted form."""
        return {
            "currentKeyIndex": self.current_index,
            "usageCounts": list(self.usage_counts),
            "lastResetMonth": self.last_reset_month,
        }

    @classmethod
    def from_document(cls, doc: Any) -> LedgerState:
        """Build a state from a decoded JSON document.

        Raises:
            ValueError: If the document does not have the expected shape.
        """
        if not isinstance(doc, dict):
            raise ValueError("ledger document must be a JSON object")
        try:
            counts = [int(c) for c in doc.get("usageCounts", [])]
            return cls(
                current_index=int(doc.get("currentKeyIndex", 0)),
                usage_counts=[max(0, c) for c in counts],
                last_reset_month=int(doc.get("lastResetMonth", 0)),
            )
        except (TypeError, ValueError) as exc:
            raise ValueError(f"malformed ledger document: {exc}") from exc


class LedgerStore(Protocol):
    """Storage capability injected into :class:`~page_relay.core.key_router.KeyQuotaRouter`."""

    def load(self) -> LedgerState | None:
        """Return the stored state, or ``None`` if absent or unreadable."""
        ...

    def save(self, state: LedgerState) -> bool:
        """Persist *state*.  Return ``True`` on success."""
        ...


class JsonFileLedgerStore:
    """Ledger store backed by a JSON file, overwritten atomically.

    Writes go to a temporary file in the same directory and are moved into
    place with :func:`os.replace`, so readers never observe a half-written
    document.

    Args:
        path: Location of the JSON document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> LedgerState | None:
        if not self.path.exists():
            logger.info("ledger: no state file at %s, starting fresh", self.path)
            return None
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
            return LedgerState.from_document(doc)
        except (OSError, ValueError) as exc:
            logger.warning("ledger: ignoring unreadable state file %s: %s", self.path, exc)
            return None

    def save(self, state: LedgerState) -> bool:
        tmp_name: str | None = None
        try:
            directory = self.path.parent
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state.to_document(), fh)
            os.replace(tmp_name, self.path)
            return True
        except OSError as exc:
            logger.error("ledger: failed to save state to %s: %s", self.path, exc)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            return False


class MemoryLedgerStore:
    """Process-local ledger store.  Used in tests and when persistence is disabled."""

    def __init__(self, initial: LedgerState | None = None) -> None:
        self.state: LedgerState | None = initial
        self.save_count = 0

    def load(self) -> LedgerState | None:
        if self.state is None:
            return None
        return LedgerState.from_document(self.state.to_document())

    def save(self, state: LedgerState) -> bool:
        self.state = LedgerState.from_document(state.to_document())
        self.save_count += 1
        return True
