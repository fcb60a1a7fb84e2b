from app.config import Settings

from .base import TranscriptStore
from .memory import MemoryTranscriptStore


def get_transcript_store(settings: Settings) -> TranscriptStore:
    """Return the transcript store selected by TRANSCRIPT_STORE ('sqlite' or 'memory')."""
    backend = (settings.transcript_store or "sqlite").lower()

    if backend in ("memory", "mock", "test"):
        return MemoryTranscriptStore()

    from .sqlite import SqliteTranscriptStore
    return SqliteTranscriptStore(settings.database_path)
