from __future__ import annotations

"""Matplotlib plots for tempo trends, rating heatmaps and the mastery distribution."""

from typing import Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from chunkcoach.scheduling.mastery import MASTERY_LEVELS


def plot_trend(
    df: pd.DataFrame,
    *,
    chunk_id: Optional[str] = None,
    value_col: str = "tempo_ratio",
    save_path: Optional[str | bytes | "os.PathLike[str]"] = None,
) -> bool:
    """Scatter of `value_col` per session with its EWMA line. False if nothing to plot."""
    g = df.copy()
    if chunk_id is not None:
        g = g[g["chunk_id"].astype("string") == chunk_id]
    if g.empty:
        return False
    g = g.sort_values("session_idx")
    plt.figure()
    plt.plot(g["session_idx"], g[value_col], marker="o", linestyle="", label=value_col)
    smooth_col = f"{value_col}_smooth"
    if smooth_col in g.columns:
        plt.plot(g["session_idx"], g[smooth_col], linewidth=2, label=f"{value_col} (EWMA)")
    plt.xlabel("Session")
    plt.ylabel(value_col)
    plt.title(f"Trend: {chunk_id}" if chunk_id else "Trend")
    plt.legend()
    if save_path:
        plt.savefig(save_path, bbox_inches="tight", dpi=150)
    plt.close()
    return True


def plot_heatmap(
    df: pd.DataFrame,
    *,
    value_col: str = "rating",
    save_path: Optional[str | bytes | "os.PathLike[str]"] = None,
) -> bool:
    """Mean `value_col` per (chunk, session)."""
    if df.empty:
        return False
    pivot = (
        df.assign(_v=df[value_col].astype("float32"))
        .groupby(["chunk_id", "session_idx"], observed=True)["_v"].mean()
        .unstack("session_idx")
        .sort_index()
    )
    if pivot.empty:
        return False
    M = pivot.to_numpy(dtype="float32", na_value=np.nan)
    plt.figure()
    im = plt.imshow(M, aspect="auto", origin="lower")
    plt.colorbar(im, label=value_col)
    plt.xticks(ticks=np.arange(pivot.shape[1]), labels=pivot.columns.astype(str))
    plt.yticks(ticks=np.arange(pivot.shape[0]), labels=pivot.index.astype(str))
    plt.title(f"Heatmap ({value_col})")
    plt.xlabel("Session")
    plt.ylabel("Chunk")
    if save_path:
        plt.savefig(save_path, bbox_inches="tight", dpi=150)
    plt.close()
    return True


def plot_levels(
    table: pd.DataFrame,
    *,
    save_path: Optional[str | bytes | "os.PathLike[str]"] = None,
) -> bool:
    """Bar chart of how many chunks sit on each mastery level."""
    if table.empty:
        return False
    counts = np.bincount(table["level"].to_numpy(dtype=np.int64), minlength=len(MASTERY_LEVELS))
    plt.figure()
    plt.bar(np.arange(len(MASTERY_LEVELS)), counts)
    plt.xticks(ticks=np.arange(len(MASTERY_LEVELS)), labels=[m.name for m in MASTERY_LEVELS])
    plt.ylabel("Chunks")
    plt.title("Mastery distribution")
    if save_path:
        plt.savefig(save_path, bbox_inches="tight", dpi=150)
    plt.close()
    return True
