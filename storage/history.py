from __future__ import annotations

"""Parquet-backed rating log using pandas + pyarrow.

Unit of data: one row per rating applied to a chunk.
"""

from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd

from .schema import DTYPES, PracticeState, RatingRow
from .store import RatingChange

HISTORY_FILE = "practice_history.parquet"


def _empty_df() -> pd.DataFrame:
    return pd.DataFrame({k: pd.Series(dtype=v) for k, v in DTYPES.items()})


def _fix_dtypes(df: pd.DataFrame) -> pd.DataFrame:
    for col, dt in DTYPES.items():
        if col not in df.columns:
            df[col] = pd.Series(pd.NA, index=df.index)
        df[col] = df[col].astype(dt)
    return df[list(DTYPES.keys())]


def init_history(data_dir: Path, filename: str = HISTORY_FILE) -> Path:
    """Ensure the data directory and an empty Parquet log with the right schema exist."""
    data_dir = Path(data_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    f = data_dir / filename
    if not f.exists():
        _empty_df().to_parquet(f, engine="pyarrow", compression="zstd", index=False)
    return f


def rating_rows(state: PracticeState, changes: Iterable[RatingChange],
                session_number: Optional[int] = None) -> List[RatingRow]:
    rows = []
    for ch in changes:
        rec = state.chunks[ch.chunk_id]
        rows.append(RatingRow(
            song_hash=state.song_hash,
            chunk_id=ch.chunk_id,
            session_number=state.session_count if session_number is None else session_number,
            rated_at=rec.last_practiced,
            rating=ch.rating,
            tempo=ch.tempo,
            base_tempo=state.base_tempo,
            level_before=ch.previous_level,
            level_after=ch.level,
        ))
    return rows


def validate_rows(rows: List[RatingRow]) -> pd.DataFrame:
    """Validate rows and return a DataFrame with the log's dtypes."""
    if not isinstance(rows, list):
        raise TypeError("rows must be a list[RatingRow]")
    models = [r if isinstance(r, RatingRow) else RatingRow.model_validate(r) for r in rows]
    df = pd.DataFrame([m.model_dump() for m in models])
    if df.empty:
        return _empty_df()
    return _fix_dtypes(df)


def append_rating_history(df_new: pd.DataFrame, data_dir: Path, filename: str = HISTORY_FILE) -> None:
    """Append rows to the log, dropping exact duplicates."""
    f = init_history(data_dir, filename)
    df_old = pd.read_parquet(f, engine="pyarrow")
    frames = [_fix_dtypes(d.copy()) for d in (df_old, df_new) if not d.empty]
    if not frames:
        return
    combined = _fix_dtypes(pd.concat(frames, ignore_index=True)).drop_duplicates()
    combined.to_parquet(f, engine="pyarrow", compression="zstd", index=False)


def load_history(data_dir: Path, filename: str = HISTORY_FILE) -> pd.DataFrame:
    """Load the log with dtypes enforced, adding ``tempo_ratio = tempo / base_tempo`` (float32)."""
    f = Path(data_dir) / filename
    if not f.exists():
        return _empty_df().assign(tempo_ratio=pd.Series(dtype="float32"))
    df = _fix_dtypes(pd.read_parquet(f, engine="pyarrow"))
    base = df["base_tempo"].astype("float32").where(df["base_tempo"] > 0, other=1.0)
    df["tempo_ratio"] = (df["tempo"].astype("float32") / base).astype("float32")
    return df


def query_chunk(df: pd.DataFrame, chunk_id: str) -> pd.DataFrame:
    """Rows of one chunk in rating order."""
    dff = df[df["chunk_id"].astype("string") == chunk_id]
    return dff.sort_values("rated_at").reset_index(drop=True)


def export_ndjson(df: pd.DataFrame, out_path: Path) -> None:
    """Export a DataFrame to line-delimited JSON for quick inspection."""
    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    df.to_json(out_path, orient="records", lines=True, date_format="iso")
