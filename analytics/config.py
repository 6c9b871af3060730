from __future__ import annotations

"""Analytics configuration (hyperparameters) using Pydantic."""

from pydantic import BaseModel, Field


class AnalyticsConfig(BaseModel):
    """Hyperparameters for rating-history metrics and smoothing.

    - clean_threshold: ratings at or above count as clean (1..5)
    - struggle_threshold: ratings at or below count as struggled (1..5)
    - smoothing_span: EWMA span in sessions (>1)
    """

    clean_threshold: int = Field(5, ge=1, le=5)
    struggle_threshold: int = Field(1, ge=1, le=5)
    smoothing_span: int = Field(5, gt=1)
