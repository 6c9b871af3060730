from __future__ import annotations

"""Load the rating log and compute derived metrics."""

from pathlib import Path

import pandas as pd

from storage.history import HISTORY_FILE, load_history

from .config import AnalyticsConfig
from .metrics import compute_metrics


def load_and_prepare(data_dir: Path, cfg: AnalyticsConfig, filename: str = HISTORY_FILE) -> pd.DataFrame:
    """Read the rating log and compute metrics with consistent dtypes.

    - Sorts by (rated_at, chunk_id).
    - Computes metrics and adds a stable session index 'session_idx'
      (order of first appearance of each session number).
    """
    df = load_history(Path(data_dir), filename)
    df = df.sort_values(["rated_at", "chunk_id"], kind="stable").reset_index(drop=True)
    df = compute_metrics(df, cfg)
    df["session_idx"] = pd.factorize(df["session_number"])[0]
    return df
