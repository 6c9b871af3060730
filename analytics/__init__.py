from .config import AnalyticsConfig
from .metrics import compute_metrics, progress_table, progress_counts
from .prepare import load_and_prepare
from .smoothing import ewma_by_session
from .plots import plot_trend, plot_heatmap, plot_levels

__all__ = [
    "AnalyticsConfig",
    "compute_metrics",
    "progress_table",
    "progress_counts",
    "load_and_prepare",
    "ewma_by_session",
    "plot_trend",
    "plot_heatmap",
    "plot_levels",
]
