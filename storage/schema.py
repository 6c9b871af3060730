from __future__ import annotations

"""Pydantic models for the practice-state document and the rating-history table."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, Field, field_validator

from chunkcoach.analysis.models import Chunk
from chunkcoach.scheduling.mastery import MAX_LEVEL, ChunkMasteryState, HistoryEntry

STATE_VERSION = 1

# Parquet columns of the rating log, one row per applied rating.
DTYPES = {
    "song_hash": "string",
    "chunk_id": "string",
    "session_number": "UInt32",
    # timezone-aware UTC timestamps
    "rated_at": pd.DatetimeTZDtype(tz="UTC"),
    "rating": "UInt8",
    "tempo": "UInt16",
    "base_tempo": "float32",
    "level_before": "UInt8",
    "level_after": "UInt8",
}


def _utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class HistoryRecord(BaseModel):
    date: datetime
    rating: int = Field(ge=1, le=5)
    tempo: int = Field(ge=0)

    @field_validator("date")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)


class ChunkRecord(BaseModel):
    bar_range: Tuple[int, int]
    difficulty: int = Field(default=0, ge=0, le=100)
    mastery_level: int = Field(default=0, ge=0, le=MAX_LEVEL)
    last_practiced: Optional[datetime] = None
    next_review: Optional[datetime] = None
    history: List[HistoryRecord] = Field(default_factory=list)

    @field_validator("last_practiced", "next_review")
    @classmethod
    def _ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc(v)

    @classmethod
    def fresh(cls, chunk: Chunk) -> "ChunkRecord":
        return cls(bar_range=chunk.bar_range, difficulty=chunk.difficulty)

    def to_mastery(self) -> ChunkMasteryState:
        return ChunkMasteryState(
            mastery_level=self.mastery_level,
            last_practiced=self.last_practiced,
            next_review=self.next_review,
            history=tuple(HistoryEntry(h.date, h.rating, h.tempo) for h in self.history),
        )

    def with_mastery(self, state: ChunkMasteryState) -> "ChunkRecord":
        return self.model_copy(update={
            "mastery_level": state.mastery_level,
            "last_practiced": state.last_practiced,
            "next_review": state.next_review,
            "history": [HistoryRecord(date=h.date, rating=h.rating, tempo=h.tempo) for h in state.history],
        })


class PracticeState(BaseModel):
    version: int = STATE_VERSION
    song_file: str = ""
    song_hash: str = ""
    base_tempo: float = Field(default=120.0, gt=0)
    session_count: int = Field(default=0, ge=0)
    last_session: Optional[datetime] = None
    chunks: Dict[str, ChunkRecord] = Field(default_factory=dict)

    @field_validator("last_session")
    @classmethod
    def _ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _utc(v)

    def mastery_map(self) -> Dict[str, ChunkMasteryState]:
        return {cid: rec.to_mastery() for cid, rec in self.chunks.items()}


class RatingRow(BaseModel):
    song_hash: str = ""
    chunk_id: str
    session_number: int = Field(default=0, ge=0)
    rated_at: datetime
    rating: int = Field(ge=1, le=5)
    tempo: int = Field(ge=0, le=65535)
    base_tempo: float = Field(gt=0)
    level_before: int = Field(ge=0, le=MAX_LEVEL)
    level_after: int = Field(ge=0, le=MAX_LEVEL)

    @field_validator("rated_at")
    @classmethod
    def _ensure_utc(cls, v: datetime) -> datetime:
        return _utc(v)
