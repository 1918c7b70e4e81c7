from datetime import datetime, timedelta, timezone

from confab.app.services.transcripts import TranscriptBuffer, format_transcripts


def test_speakers_get_stable_numbered_names():
    buffer = TranscriptBuffer()
    names = [buffer.add("hi", speaker).speaker for speaker in ("alice", "bob", "alice", None, "User")]
    assert names == ["Speaker 1", "Speaker 2", "Speaker 1", "unknown", "user"]


def test_speaker_numbering_is_per_buffer():
    first, second = TranscriptBuffer(), TranscriptBuffer()
    first.add("one", "alice")
    assert second.add("two", "bob").speaker == "Speaker 1"


def test_recent_uses_the_time_window():
    buffer = TranscriptBuffer()
    now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    buffer.add("old", "a", timestamp=now - timedelta(seconds=30))
    buffer.add("edge", "a", timestamp=now - timedelta(seconds=15))
    buffer.add("new", "a", timestamp=now - timedelta(seconds=2))

    assert [e.text for e in buffer.recent(15000, now=now)] == ["edge", "new"]
    assert [e.text for e in buffer.recent(60000, now=now)] == ["old", "edge", "new"]
    assert len(buffer) == 3


def test_clear_resets_entries_and_speakers():
    buffer = TranscriptBuffer()
    buffer.add("hi", "alice")
    buffer.add("hello", "bob")
    buffer.clear()

    assert buffer.all() == []
    assert buffer.add("again", "bob").speaker == "Speaker 1"


def test_format_transcripts():
    buffer = TranscriptBuffer()
    buffer.add("We need a cheaper tier", "alice")
    buffer.add("Agreed", "assistant")
    assert format_transcripts(buffer.all()) == "[Speaker 1]: We need a cheaper tier\n[assistant]: Agreed"
