"""Unit tests for the usage ledger."""

import threading
from unittest.mock import MagicMock

import pytest

from drapeworks.core.ledger_store import LedgerStoreError, MemoryLedgerStore
from drapeworks.core.usage_ledger import Pricing, UsageLedger

CALLS = [
    dict(input_tokens=1200, output_tokens=1290, input_images=3, output_images=1),
    dict(input_tokens=800, output_tokens=0, input_images=2, output_images=0),
    dict(input_tokens=0, output_tokens=0, input_images=4, output_images=0),
]


def _record(ledger, success=True, **counts):
    return ledger.record_generation(model="fake-image-model", success=success, **counts)


class TestPricing:
    def test_default_rates(self):
        input_cost, output_cost, total = Pricing().calculate(1_000_000, 1_000_000, 1, 1)
        assert input_cost == pytest.approx(1.25 + 0.0032)
        assert output_cost == pytest.approx(5.00 + 0.032)
        assert total == pytest.approx(input_cost + output_cost)

    def test_zero_usage_costs_nothing(self):
        assert Pricing().calculate(0, 0, 0, 0) == (0, 0, 0)


class TestRecordGeneration:
    def test_record_fields(self, ledger):
        record = _record(ledger, **CALLS[0])
        pricing = Pricing()
        assert record.id == "gen_1700000000000_1"
        assert record.timestamp == 1_700_000_000.0
        assert record.input_cost == pytest.approx(1200 * pricing.input_text_per_token + 3 * 0.0032)
        assert record.output_cost == pytest.approx(1290 * pricing.output_text_per_token + 0.032)
        assert record.total_cost == pytest.approx(record.input_cost + record.output_cost)
        assert record.model == "fake-image-model"
        assert record.success is True

    def test_identities_increase(self, ledger):
        ids = [_record(ledger, **c).id for c in CALLS]
        assert [i.rsplit("_", 1)[1] for i in ids] == ["1", "2", "3"]
        assert len(set(ids)) == 3

    def test_rejected_record_leaves_no_identity_gap(self, ledger, memory_store):
        _record(ledger, **CALLS[0])
        with pytest.raises(ValueError):
            _record(ledger, **{**CALLS[1], "input_tokens": -5})

        record = _record(ledger, **CALLS[2])

        assert record.id.endswith("_2")
        assert len(ledger.records) == 2
        assert memory_store.saves == 2

    def test_each_record_persisted(self, ledger, memory_store):
        for c in CALLS:
            _record(ledger, **c)
        assert memory_store.saves == 3
        assert len(memory_store.load().records) == 3

    def test_session_start_stamped_once(self, memory_store):
        times = iter([100.0, 200.0, 300.0])
        ledger = UsageLedger(memory_store, clock=lambda: next(times))
        _record(ledger, **CALLS[0])
        _record(ledger, **CALLS[1])
        assert memory_store.load().first_generation_at == 100.0
        assert ledger.get_stats().session_started_at == 100.0

    def test_persistence_failure_keeps_record(self, caplog):
        store = MagicMock()
        store.load.return_value = MemoryLedgerStore().load()
        store.save.side_effect = LedgerStoreError("disk full")
        ledger = UsageLedger(store)

        record = _record(ledger, **CALLS[0])

        assert ledger.records == (record,)
        assert ledger.get_stats().total_generations == 1
        assert "Failed to persist usage ledger" in caplog.text

    def test_state_loaded_from_store(self, memory_store):
        first = UsageLedger(memory_store, clock=lambda: 5.0)
        _record(first, **CALLS[0])
        second = UsageLedger(memory_store, clock=lambda: 6.0)
        record = _record(second, **CALLS[1])
        assert record.id == "gen_6000_2"
        assert len(second.records) == 2

    def test_concurrent_appends_not_lost(self, ledger, memory_store):
        def worker():
            for _ in range(25):
                _record(ledger, **CALLS[1])

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger.records) == 200
        assert len(memory_store.load().records) == 200
        assert len({r.id for r in ledger.records}) == 200


class TestGetStats:
    def test_totals_are_exact_sums(self, ledger):
        records = [_record(ledger, success=c["output_images"] > 0, **c) for c in CALLS]
        stats = ledger.get_stats()

        assert stats.total_generations == 3
        assert stats.successful_generations == 1
        assert stats.failed_generations == 2
        assert stats.total_input_tokens == 2000
        assert stats.total_output_tokens == 1290
        assert stats.total_tokens == 3290
        assert stats.total_input_images == 9
        assert stats.total_output_images == 1
        assert stats.total_cost == sum(r.total_cost for r in records)
        assert stats.average_cost_per_image == pytest.approx(stats.total_cost)
        assert stats.average_tokens_per_generation == pytest.approx(3290 / 3)

    def test_recent_is_newest_first_and_limited(self, memory_store):
        ledger = UsageLedger(memory_store, recent_limit=20)
        for _ in range(25):
            _record(ledger, **CALLS[1])
        recent = ledger.get_stats().recent_generations
        assert len(recent) == 20
        assert recent[0].id.endswith("_25")
        assert recent[-1].id.endswith("_6")

    def test_empty_ledger(self, memory_store):
        ledger = UsageLedger(memory_store, clock=lambda: 42.0)
        stats = ledger.get_stats()
        assert stats.total_generations == 0
        assert stats.average_cost_per_image == 0
        assert stats.average_tokens_per_generation == 0
        assert stats.recent_generations == []
        assert stats.session_started_at == 42.0

    def test_no_output_images_average_zero(self, ledger):
        _record(ledger, success=False, **CALLS[1])
        assert ledger.get_stats().average_cost_per_image == 0


class TestReset:
    def test_reset_clears_everything(self, memory_store):
        times = iter([10.0, 20.0, 30.0])
        ledger = UsageLedger(memory_store, clock=lambda: next(times))
        for c in CALLS[:2]:
            _record(ledger, **c)

        ledger.reset()
        stats = ledger.get_stats()

        assert stats.total_generations == 0
        assert stats.successful_generations == 0
        assert stats.failed_generations == 0
        assert stats.total_tokens == 0
        assert stats.total_cost == 0
        assert stats.recent_generations == []
        assert stats.session_started_at == 30.0
        assert memory_store.load().records == []

    def test_identity_restarts_after_reset(self, ledger):
        _record(ledger, **CALLS[0])
        ledger.reset()
        assert _record(ledger, **CALLS[0]).id.endswith("_1")

    def test_clear_failure_logged(self, caplog):
        store = MagicMock()
        store.load.return_value = MemoryLedgerStore().load()
        store.clear.side_effect = LedgerStoreError("read-only")
        ledger = UsageLedger(store)
        ledger.reset()
        assert ledger.get_stats().total_generations == 0
        assert "Failed to clear persisted usage ledger" in caplog.text
