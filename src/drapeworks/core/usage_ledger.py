"""Usage and cost ledger for generation calls.

Every call to the generation service, successful or not, is appended to the
ledger as an immutable :class:`UsageRecord` with its derived cost.  The ledger
owns the full record sequence and the identity counter; records are never
edited or removed one by one, only the whole ledger can be reset.

Persistence
-----------
The ledger does not know where it is stored.  A :class:`LedgerStore` is
injected at construction (see :mod:`drapeworks.core.ledger_store` for the JSON
file, SQLite and in-memory strategies).  The full ledger is written
synchronously after each record.  A failed write is logged and otherwise
ignored: the in-memory ledger keeps the record and keeps operating, so
durability is best-effort rather than transactional.

Concurrency
-----------
One ledger is created per process and shared by reference.  Appends, resets
and stats snapshots are serialized with a lock so concurrent requests cannot
lose records through interleaved read-modify-write cycles.

Usage
-----
::

    ledger = UsageLedger(JsonLedgerStore(Path("data/usage-data.json")))
    record = ledger.record_generation(
        input_tokens=1200, output_tokens=1290,
        input_images=3, output_images=1,
        model="gemini-3-pro-image-preview", success=True,
    )
    stats = ledger.get_stats()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

RECENT_RECORDS_LIMIT = 20


@dataclass(frozen=True)
class Pricing:
    """Per-unit prices in USD.

    Defaults are the Gemini 3 Pro Image Preview rates: $1.25 / $5.00 per
    million input / output text tokens, $0.0032 per input image and $0.032
    per output image.
    """

    input_text_per_token: float = 1.25 / 1_000_000
    output_text_per_token: float = 5.00 / 1_000_000
    input_image: float = 0.0032
    output_image: float = 0.0320

    def calculate(
        self,
        input_tokens: int,
        output_tokens: int,
        input_images: int,
        output_images: int,
    ) -> tuple[float, float, float]:
        """Return ``(input_cost, output_cost, total_cost)`` for one call."""
        input_cost = input_tokens * self.input_text_per_token + input_images * self.input_image
        output_cost = (
            output_tokens * self.output_text_per_token + output_images * self.output_image
        )
        return input_cost, output_cost, input_cost + output_cost


class UsageRecord(BaseModel):
    """One generation call as recorded in the ledger."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: float
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    input_images: int = Field(ge=0)
    output_images: int = Field(ge=0)
    input_cost: float
    output_cost: float
    total_cost: float
    model: str
    success: bool


class LedgerSnapshot(BaseModel):
    """The persisted ledger document.

    Attributes:
        records: All records in append order.
        id_counter: Last identity counter value handed out.
        first_generation_at: Timestamp of the first record ever appended
            since the last reset, or ``None`` for an empty ledger.
    """

    records: list[UsageRecord] = Field(default_factory=list)
    id_counter: int = 0
    first_generation_at: float | None = None


class LedgerStore(Protocol):
    """Persistence strategy for a :class:`UsageLedger`."""

    def load(self) -> LedgerSnapshot:
        """Return the stored ledger, or an empty one if absent or unreadable."""
        ...

    def save(self, snapshot: LedgerSnapshot) -> None:
        """Persist the full ledger, raising ``LedgerStoreError`` on failure."""
        ...

    def clear(self) -> None:
        """Remove the stored ledger."""
        ...


class UsageStats(BaseModel):
    """Aggregate view of the ledger."""

    total_generations: int
    successful_generations: int
    failed_generations: int
    total_input_tokens: int
    total_output_tokens: int
    total_tokens: int
    total_input_images: int
    total_output_images: int
    total_cost: float
    average_cost_per_image: float
    average_tokens_per_generation: float
    recent_generations: list[UsageRecord]
    session_started_at: float


class UsageLedger:
    """Append-only ledger of generation usage with derived costs.

    Attributes:
        pricing (Pricing): Prices used to derive each record's cost.
        recent_limit (int): Number of records in ``get_stats().recent_generations``.
    """

    def __init__(
        self,
        store: LedgerStore,
        pricing: Pricing | None = None,
        *,
        recent_limit: int = RECENT_RECORDS_LIMIT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.pricing = pricing or Pricing()
        self.recent_limit = recent_limit
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot = store.load()
        logger.info(f"Usage ledger loaded with {len(self._snapshot.records)} record(s)")

    @property
    def records(self) -> tuple[UsageRecord, ...]:
        """All records in append order."""
        with self._lock:
            return tuple(self._snapshot.records)

    def record_generation(
        self,
        *,
        input_tokens: int,
        output_tokens: int,
        input_images: int,
        output_images: int,
        model: str,
        success: bool,
    ) -> UsageRecord:
        """Append a record for one generation call and persist the ledger.

        Never raises on persistence failure; the record is kept in memory and
        the failure is logged.

        Returns:
            The appended record.
        """
        input_cost, output_cost, total_cost = self.pricing.calculate(
            input_tokens, output_tokens, input_images, output_images
        )

        with self._lock:
            now = self._clock()
            counter = self._snapshot.id_counter + 1
            record = UsageRecord(
                id=f"gen_{int(now * 1000)}_{counter}",
                timestamp=now,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                input_images=input_images,
                output_images=output_images,
                input_cost=input_cost,
                output_cost=output_cost,
                total_cost=total_cost,
                model=model,
                success=success,
            )
            self._snapshot.id_counter = counter

            if self._snapshot.first_generation_at is None:
                self._snapshot.first_generation_at = now
            self._snapshot.records.append(record)

            try:
                self._store.save(self._snapshot)
            except Exception as e:
                logger.error(f"Failed to persist usage ledger, keeping record in memory: {e}")

        logger.info(
            f"Recorded generation {record.id}: success={success}, "
            f"tokens={input_tokens}/{output_tokens}, cost=${total_cost:.4f}"
        )
        return record

    def get_stats(self) -> UsageStats:
        """Aggregate counts, totals, averages and the most recent records.

        ``session_started_at`` falls back to the current time for an empty
        ledger; it is a display convenience only.
        """
        with self._lock:
            records = list(self._snapshot.records)
            started_at = self._snapshot.first_generation_at

        successful = sum(1 for r in records if r.success)
        total_input_tokens = sum(r.input_tokens for r in records)
        total_output_tokens = sum(r.output_tokens for r in records)
        total_output_images = sum(r.output_images for r in records)
        total_cost = sum(r.total_cost for r in records)
        total_tokens = total_input_tokens + total_output_tokens

        return UsageStats(
            total_generations=len(records),
            successful_generations=successful,
            failed_generations=len(records) - successful,
            total_input_tokens=total_input_tokens,
            total_output_tokens=total_output_tokens,
            total_tokens=total_tokens,
            total_input_images=sum(r.input_images for r in records),
            total_output_images=total_output_images,
            total_cost=total_cost,
            average_cost_per_image=(
                total_cost / total_output_images if total_output_images > 0 else 0.0
            ),
            average_tokens_per_generation=total_tokens / len(records) if records else 0.0,
            recent_generations=list(reversed(records[-self.recent_limit :])),
            session_started_at=started_at if started_at is not None else self._clock(),
        )

    def reset(self) -> None:
        """Discard every record, the identity counter and the session start."""
        with self._lock:
            self._snapshot = LedgerSnapshot()
            try:
                self._store.clear()
            except Exception as e:
                logger.error(f"Failed to clear persisted usage ledger: {e}")
        logger.info("Usage ledger reset")
