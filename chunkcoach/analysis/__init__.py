from __future__ import annotations

"""Analysis pipeline: bars -> features -> difficulty -> chunks."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .chunks import build_chunks, extract_sections
from .difficulty import compute_medians, score_bars
from .features import extract_bar_features
from .models import BarFeature, Chunk, Song


@dataclass
class Analysis:
    features: List[BarFeature]
    medians: Dict[str, float]
    sections: List[Dict[str, object]]
    chunks: List[Chunk] = field(default_factory=list)


def analyze_song(song: Song, cfg: Optional[Dict[str, Any]] = None) -> Analysis:
    """Run the full pipeline with the `analysis` section of a validated config."""
    acfg = (cfg or {}).get("analysis", {})
    track = int(acfg.get("track", 0))
    features = score_bars(extract_bar_features(
        song, track, position_shift_min=acfg.get("position_shift_min", 3)))
    sections = extract_sections(song)
    chunks = build_chunks(
        song, features, sections, track,
        max_size=int(acfg.get("max_chunk_size", 4)),
        threshold=float(acfg.get("similarity_threshold", 5.0)),
    )
    return Analysis(features=features, medians=compute_medians(features),
                    sections=sections, chunks=chunks)


__all__ = ["Analysis", "analyze_song"]
