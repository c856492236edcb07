"""
Tests for the per-session answer ledger.
"""
import threading
from datetime import datetime, timedelta, timezone

from tryout.core.engine.answer_ledger import AnswerEntry, AnswerLedger

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


class TestAnswerLedger:
    """Tests for AnswerLedger writes and snapshots."""

    def test_record_overwrites_by_question(self):
        """Two selections for one question leave a single entry with the second value."""
        ledger = AnswerLedger(session_id=1)
        ledger.record(10, "A", T0)
        ledger.record(10, "C", T0 + timedelta(seconds=5))

        snapshot = ledger.snapshot()
        assert len(snapshot) == 1
        assert snapshot[0].option_key == "C"
        assert snapshot[0].answered_at == T0 + timedelta(seconds=5)

    def test_unset_keeps_entry_without_option(self):
        """Clearing an answer stores an unanswered entry rather than deleting it."""
        ledger = AnswerLedger(session_id=1)
        ledger.record(10, "B", T0)
        entry = ledger.unset(10, T0)

        assert entry.option_key is None
        assert entry.answered is False
        assert len(ledger) == 1
        assert ledger.answered_count == 0

    def test_flag_preserves_answer_and_timestamp(self):
        """Flagging does not change the selection or when it was made."""
        ledger = AnswerLedger(session_id=1)
        ledger.record(10, "B", T0)
        entry = ledger.flag(10, True, T0 + timedelta(seconds=30))

        assert entry.flagged is True
        assert entry.option_key == "B"
        assert entry.answered_at == T0

    def test_record_keeps_existing_flag(self):
        ledger = AnswerLedger(session_id=1)
        ledger.flag(10, True, T0)
        entry = ledger.record(10, "D", T0)

        assert entry.flagged is True
        assert ledger.flagged_count == 1

    def test_toggle_flag(self):
        """Toggling twice returns the flag to its original state."""
        ledger = AnswerLedger(session_id=1)
        assert ledger.toggle_flag(10, T0).flagged is True
        assert ledger.toggle_flag(10, T0).flagged is False

    def test_concurrent_toggles_are_not_lost(self):
        """An even number of toggles from many threads leaves the flag cleared."""
        ledger = AnswerLedger(session_id=1)
        ledger.record(10, "A", T0)

        def toggle_many():
            for _ in range(200):
                ledger.toggle_flag(10, T0)

        threads = [threading.Thread(target=toggle_many) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entry = ledger.get(10)
        assert entry.flagged is False
        assert entry.option_key == "A"

    def test_snapshot_sorted_by_question(self):
        ledger = AnswerLedger(
            session_id=1,
            entries=[
                AnswerEntry(30, "A", False, T0),
                AnswerEntry(10, "B", False, T0),
                AnswerEntry(20, None, True, T0),
            ],
        )
        assert [e.question_id for e in ledger.snapshot()] == [10, 20, 30]

    def test_concurrent_writes_never_tear_snapshot(self):
        """Snapshots taken during concurrent writes only see whole entries."""
        ledger = AnswerLedger(session_id=1)
        stop = threading.Event()
        torn = []

        def writer(question_id: int):
            keys = ["A", "B", "C", "D"]
            i = 0
            while not stop.is_set():
                ledger.record(question_id, keys[i % 4], T0)
                i += 1

        def reader():
            for _ in range(500):
                for entry in ledger.snapshot():
                    if entry.option_key not in ("A", "B", "C", "D"):
                        torn.append(entry)

        writers = [threading.Thread(target=writer, args=(q,)) for q in range(5)]
        for t in writers:
            t.start()
        reader()
        stop.set()
        for t in writers:
            t.join()

        assert torn == []
        assert len(ledger) == 5
