from __future__ import annotations

"""Progress and rating-history metrics."""

from datetime import datetime
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from chunkcoach.analysis.models import Chunk, bar_span_label
from chunkcoach.scheduling.mastery import MAX_LEVEL, MASTERY_LEVELS, practice_bpm, review_status
from storage.schema import PracticeState

from .config import AnalyticsConfig


def compute_metrics(df: pd.DataFrame, cfg: AnalyticsConfig) -> pd.DataFrame:
    """Per-rating metrics.

    Returns a copy with added columns:
    - tempo_ratio (if missing), clean, struggled, level_delta
    """
    out = df.copy()
    if "tempo_ratio" not in out.columns:
        base = out["base_tempo"].astype("float32").where(out["base_tempo"] > 0, other=1.0)
        out["tempo_ratio"] = (out["tempo"].astype("float32") / base).astype("float32")
    rating = out["rating"].astype("float32")
    out["clean"] = (rating >= cfg.clean_threshold).astype("float32")
    out["struggled"] = (rating <= cfg.struggle_threshold).astype("float32")
    out["level_delta"] = (out["level_after"].astype("int16") - out["level_before"].astype("int16")).astype("int8")
    return out


def progress_table(chunks: Sequence[Chunk], state: PracticeState,
                   now: Optional[datetime] = None) -> pd.DataFrame:
    """One row per chunk that has a record: level, practice BPM, review status."""
    rows = []
    for chunk in chunks:
        rec = state.chunks.get(chunk.id)
        if rec is None:
            continue
        mastery = rec.to_mastery()
        rows.append({
            "chunk_id": chunk.id,
            "bars": bar_span_label(*chunk.bar_range),
            "difficulty": chunk.difficulty,
            "level": rec.mastery_level,
            "level_name": MASTERY_LEVELS[rec.mastery_level].name,
            "bpm": practice_bpm(state.base_tempo, rec.mastery_level),
            "review": review_status(mastery, now),
            "ratings": len(rec.history),
        })
    df = pd.DataFrame(rows, columns=["chunk_id", "bars", "difficulty", "level", "level_name",
                                     "bpm", "review", "ratings"])
    return df.astype({"difficulty": "int64", "level": "int64", "bpm": "int64", "ratings": "int64"})


def progress_counts(table: pd.DataFrame) -> Dict[str, int]:
    """Mastered (5), solid (>=4), learning (1-3), new (0), and overall mastered %."""
    levels = table["level"].to_numpy(dtype=np.int64) if not table.empty else np.array([], dtype=np.int64)
    total = int(levels.size)
    mastered = int(np.sum(levels >= MAX_LEVEL))
    return {
        "total": total,
        "mastered": mastered,
        "solid": int(np.sum(levels >= 4)),
        "learning": int(np.sum((levels > 0) & (levels < 4))),
        "new": int(np.sum(levels == 0)),
        "overall_pct": int(np.floor(mastered / total * 100 + 0.5)) if total else 0,
    }
