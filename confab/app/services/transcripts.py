from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ..config import TRANSCRIPT_WINDOW_MS
from ..schemas.transcript import TranscriptEntry

# Roles that keep their own name instead of getting a "Speaker N" label.
NAMED_ROLES = {"user", "assistant", "system"}
UNKNOWN_SPEAKER = "unknown"


class TranscriptBuffer:
    """Conversation lines for one session, oldest first."""

    def __init__(self):
        self._entries: List[TranscriptEntry] = []
        self._speakers: Dict[str, str] = {}

    def speaker_name(self, key: Optional[str]) -> str:
        raw = (key or "").strip()
        if not raw:
            return UNKNOWN_SPEAKER
        if raw.lower() in NAMED_ROLES:
            return raw.lower()
        if raw not in self._speakers:
            self._speakers[raw] = f"Speaker {len(self._speakers) + 1}"
        return self._speakers[raw]

    def add(self, text: str, speaker: Optional[str] = None, timestamp: Optional[datetime] = None) -> TranscriptEntry:
        entry = TranscriptEntry(
            speaker=self.speaker_name(speaker),
            text=text,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        self._entries.append(entry)
        return entry

    def recent(self, window_ms: int = TRANSCRIPT_WINDOW_MS, now: Optional[datetime] = None) -> List[TranscriptEntry]:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(milliseconds=window_ms)
        return [e for e in self._entries if e.timestamp >= cutoff]

    def all(self) -> List[TranscriptEntry]:
        return list(self._entries)

    def clear(self):
        self._entries = []
        self._speakers = {}

    def __len__(self):
        return len(self._entries)


def format_transcripts(entries: List[TranscriptEntry]) -> str:
    return "\n".join(f"[{e.speaker}]: {e.text}" for e in entries)
