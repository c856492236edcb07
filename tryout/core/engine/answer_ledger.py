"""
Answer ledger: the per-question responses of one session.

Writes overwrite by question id; a question has at most one live entry and
entries are never deleted (clearing an answer stores an entry with no
option). Entries are immutable values swapped under a lock, so a snapshot
never observes a half-applied write.
"""
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional


@dataclass(frozen=True)
class AnswerEntry:
    """Latest response to one question."""

    question_id: int
    option_key: Optional[str]  # None = unanswered (never answered or cleared)
    flagged: bool
    answered_at: datetime

    @property
    def answered(self) -> bool:
        return self.option_key is not None


class AnswerLedger:
    """In-memory view of a session's answers, rebuilt from the store per request."""

    def __init__(self, session_id: int, entries: Iterable[AnswerEntry] = ()):
        self.session_id = session_id
        self._entries: Dict[int, AnswerEntry] = {e.question_id: e for e in entries}
        self._lock = threading.Lock()

    def get(self, question_id: int) -> Optional[AnswerEntry]:
        with self._lock:
            return self._entries.get(question_id)

    def record(self, question_id: int, option_key: str, at: datetime) -> AnswerEntry:
        """Select ``option_key`` for a question, replacing any earlier answer."""
        with self._lock:
            previous = self._entries.get(question_id)
            entry = AnswerEntry(
                question_id=question_id,
                option_key=option_key,
                flagged=previous.flagged if previous else False,
                answered_at=at,
            )
            self._entries[question_id] = entry
            return entry

    def unset(self, question_id: int, at: datetime) -> AnswerEntry:
        """Clear the selected option, keeping the flag."""
        with self._lock:
            previous = self._entries.get(question_id)
            entry = AnswerEntry(
                question_id=question_id,
                option_key=None,
                flagged=previous.flagged if previous else False,
                answered_at=at,
            )
            self._entries[question_id] = entry
            return entry

    def flag(self, question_id: int, flagged: bool, at: datetime) -> AnswerEntry:
        """Set the review flag. The answer and its timestamp are unchanged."""
        with self._lock:
            return self._set_flag(question_id, flagged, at)

    def toggle_flag(self, question_id: int, at: datetime) -> AnswerEntry:
        with self._lock:
            previous = self._entries.get(question_id)
            return self._set_flag(question_id, not previous.flagged if previous else True, at)

    def _set_flag(self, question_id: int, flagged: bool, at: datetime) -> AnswerEntry:
        # Caller holds self._lock
        previous = self._entries.get(question_id)
        if previous is None:
            entry = AnswerEntry(question_id, None, flagged, at)
        else:
            entry = replace(previous, flagged=flagged)
        self._entries[question_id] = entry
        return entry

    def snapshot(self) -> List[AnswerEntry]:
        """Consistent copy of all entries, ordered by question id."""
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.question_id)

    @property
    def answered_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if e.answered)

    @property
    def flagged_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if e.flagged)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
