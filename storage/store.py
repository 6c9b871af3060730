from __future__ import annotations

"""JSON-backed practice state: one document per song.

The document maps chunk ids to their mastery record. Chunk ids are
positional, so when the song file changes (its hash differs) the stored
records are carried over to the new chunks by bar-range overlap.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from chunkcoach.analysis.models import Chunk
from chunkcoach.app import explain
from chunkcoach.scheduling.mastery import apply_rating, utcnow, validate_rating

from .schema import ChunkRecord, PracticeState

STATE_SUFFIX = "_practice.json"


class StateFileError(Exception):
    """The state file exists but cannot be read as a practice-state document."""


@dataclass(frozen=True)
class RatingChange:
    chunk_id: str
    rating: int
    tempo: int
    previous_level: int
    level: int
    next_review: Optional[datetime]

    @property
    def changed(self) -> bool:
        return self.level != self.previous_level


def state_path(song_path: Path | str, output_dir: Path | str) -> Path:
    return Path(output_dir) / f"{Path(song_path).stem}{STATE_SUFFIX}"


def hash_file(path: Path | str) -> str:
    """Short content hash used to notice edits to the song file."""
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        for block in iter(lambda: f.read(1 << 16), b""):
            h.update(block)
    return h.hexdigest()[:16]


def read_state(path: Path | str) -> Optional[PracticeState]:
    """Parse the document at `path`; None when the file does not exist."""
    p = Path(path)
    if not p.exists():
        return None
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
        return PracticeState.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise StateFileError(f"Corrupt practice state at {p}: {e}") from e


def _overlap(a: Tuple[int, int], b: Tuple[int, int]) -> int:
    return max(0, min(a[1], b[1]) - max(a[0], b[0]) + 1)


def _id_order(chunk_id: str) -> Tuple[int, str]:
    _, _, suffix = chunk_id.rpartition("-")
    return (int(suffix), chunk_id) if suffix.isdigit() else (1 << 30, chunk_id)


def reconcile_chunks(stored: Mapping[str, ChunkRecord], chunks: Sequence[Chunk]) -> Dict[str, ChunkRecord]:
    """Carry stored records over to re-segmented chunks.

    Each new chunk inherits the record of the stored chunk it overlaps most
    (ties go to the lower stored id); chunks overlapping nothing start
    fresh. Stored records nobody inherits are dropped.
    """
    ordered = sorted(stored.items(), key=lambda kv: _id_order(kv[0]))
    out: Dict[str, ChunkRecord] = {}
    for chunk in chunks:
        best: Optional[ChunkRecord] = None
        best_overlap = 0
        for _, rec in ordered:
            ov = _overlap(chunk.bar_range, rec.bar_range)
            if ov > best_overlap:
                best, best_overlap = rec, ov
        if best is None:
            out[chunk.id] = ChunkRecord.fresh(chunk)
        else:
            out[chunk.id] = best.model_copy(update={"bar_range": chunk.bar_range, "difficulty": chunk.difficulty})
    return out


def merge_chunks(state: PracticeState, chunks: Sequence[Chunk], song_hash: Optional[str] = None) -> PracticeState:
    """Bring `state` in line with the current chunks.

    Same song: unseen ids get a level-0 record, existing records keep their
    mastery and pick up the current bar range and difficulty. Changed song:
    records are reconciled by overlap.
    """
    changed = bool(song_hash and state.song_hash and song_hash != state.song_hash)
    if changed:
        merged = reconcile_chunks(state.chunks, chunks)
    else:
        merged = dict(state.chunks)
        for c in chunks:
            rec = merged.get(c.id)
            if rec is None:
                merged[c.id] = ChunkRecord.fresh(c)
            else:
                merged[c.id] = rec.model_copy(update={"bar_range": c.bar_range, "difficulty": c.difficulty})
    explain.trace("state_merged", {
        "song_changed": changed,
        "chunks": len(chunks),
        "added": sorted(set(merged) - set(state.chunks), key=_id_order),
        "dropped": sorted(set(state.chunks) - set(merged), key=_id_order),
    })
    return state.model_copy(update={"chunks": merged, "song_hash": song_hash or state.song_hash})


def load_state(path: Path | str, *, song_file: str, song_hash: str, chunks: Sequence[Chunk],
               base_tempo: float) -> PracticeState:
    """Load (or create) the state for a song and merge in the current chunks."""
    state = read_state(path)
    if state is None:
        state = PracticeState(song_file=song_file, song_hash=song_hash, base_tempo=base_tempo)
    state = merge_chunks(state, chunks, song_hash)
    return state.model_copy(update={"song_file": song_file, "base_tempo": base_tempo})


def save_state(state: PracticeState, path: Path | str) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(state.model_dump_json(indent=2), encoding="utf-8")


def reset_state(path: Path | str) -> bool:
    """Delete the state file. Returns whether there was one."""
    p = Path(path)
    if not p.exists():
        return False
    p.unlink()
    return True


def record_session(state: PracticeState, now: Optional[datetime] = None) -> PracticeState:
    return state.model_copy(update={
        "session_count": state.session_count + 1,
        "last_session": now or utcnow(),
    })


def rate_chunks(state: PracticeState, ratings: Mapping[str, int],
                now: Optional[datetime] = None) -> Tuple[PracticeState, List[RatingChange]]:
    """Apply one rating per chunk id.

    Raises:
        KeyError: a chunk id is not in the state.
        ValueError: a rating is not an integer 1-5.
    """
    for chunk_id, rating in ratings.items():
        if chunk_id not in state.chunks:
            raise KeyError(chunk_id)
        validate_rating(rating)
    now = now or utcnow()
    chunks = dict(state.chunks)
    changes: List[RatingChange] = []
    for chunk_id, rating in ratings.items():
        rec = chunks[chunk_id]
        before = rec.to_mastery()
        after = apply_rating(before, rating, state.base_tempo, now)
        chunks[chunk_id] = rec.with_mastery(after)
        changes.append(RatingChange(
            chunk_id=chunk_id,
            rating=rating,
            tempo=after.history[-1].tempo,
            previous_level=before.mastery_level,
            level=after.mastery_level,
            next_review=after.next_review,
        ))
    return state.model_copy(update={"chunks": chunks}), changes
