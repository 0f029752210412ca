"""
Adaptive-bandwidth contact trend.

Each fragment gets a symmetric window, grown one fragment rank at a time
on both sides, until the window holds ``min_support`` UMIs. Dense
near-bait regions therefore get narrow windows and sparse far-field
regions wide ones. Windows never cross the bait exclusion zone or the
ends of the analysis region; at those boundaries they only grow on the
open side.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, NamedTuple, Optional

import numpy as np
import pandas as pd

from .batch_processor import BatchProcessor
from .exceptions import ConfigurationError, validate_numeric_param
from .genomic_utils import Region

logger = logging.getLogger(__name__)

TREND_COLUMNS = [
    "position", "rate", "half_width", "count", "width", "window_start", "window_end", "lower", "upper",
]


@dataclass
class TrendConfig:
    """Configuration for adaptive trend estimation."""
    min_support: float = 50  # UMIs required inside each window
    sd: float = 2.0  # Band width in Poisson standard deviations
    use_normalized: bool = True

    @classmethod
    def from_settings(cls) -> "TrendConfig":
        from ..config import settings

        return cls(min_support=settings.trend_min_support, sd=settings.trend_sd)


class TrendPoint(NamedTuple):
    position: int
    rate: float
    half_width: int
    count: float
    width: int
    window_start: int
    window_end: int
    lower: float
    upper: float


@dataclass
class TrendCurve:
    """Trend of one group, ordered by position. Iterating yields TrendPoints."""

    group: str
    viewpoint: Region
    table: pd.DataFrame

    def __iter__(self) -> Iterator[TrendPoint]:
        for row in self.table.itertuples(index=False):
            yield TrendPoint(*row)

    def __len__(self) -> int:
        return len(self.table)

    def to_dataframe(self) -> pd.DataFrame:
        return self.table.copy()


@dataclass
class Trend:
    """Trend curves of every group of an experiment."""

    viewpoint: Region
    curves: Dict[str, TrendCurve] = field(default_factory=dict)
    min_support: float = 50

    @property
    def groups(self) -> List[str]:
        return list(self.curves)

    def __getitem__(self, group: str) -> TrendCurve:
        if group not in self.curves:
            raise ConfigurationError(f"Group '{group}' not in trend. Available: {self.groups}")
        return self.curves[group]

    def to_dataframe(self) -> pd.DataFrame:
        """Long table with a ``group`` column."""
        frames = [c.table.assign(group=g) for g, c in self.curves.items()]
        if not frames:
            return pd.DataFrame(columns=["group"] + TREND_COLUMNS)
        df = pd.concat(frames, ignore_index=True)
        return df[["group"] + TREND_COLUMNS]


class AdaptiveTrendEngine:
    """Compute adaptive trends for every group of an experiment."""

    def __init__(self, config: Optional[TrendConfig] = None, max_workers: int = 1):
        self.config = config or TrendConfig()
        validate_numeric_param(self.config.min_support, "min_support", min_val=0)
        validate_numeric_param(self.config.sd, "sd", min_val=0)
        self.max_workers = max_workers

    def compute(self, experiment, attach: bool = True) -> Trend:
        """
        Compute one trend curve per group.

        Args:
            experiment: UMI4CExperiment to smooth.
            attach: Attach the result to the experiment.
        """
        fragments = experiment.fragments
        starts = fragments["start"].to_numpy(dtype=np.int64)
        ends = fragments["end"].to_numpy(dtype=np.int64)
        segments = _side_segments(experiment.midpoints, experiment.viewpoint)

        assay = experiment.assay(normalized=self.config.use_normalized)
        tasks = {
            group: (
                self._compute_group,
                (group, experiment.viewpoint, starts, ends, assay[group].to_numpy(dtype=np.float64), segments),
            )
            for group in assay.columns
        }
        curves = BatchProcessor(self.max_workers, name="trend").run(tasks, sort_key=str)

        result = Trend(viewpoint=experiment.viewpoint, curves=curves, min_support=self.config.min_support)
        logger.info(f"Trend for {experiment.viewpoint}: {len(curves)} group(s), {len(starts)} positions")
        if attach:
            experiment.attach("trend", result)
        return result

    def _compute_group(self, group, viewpoint, starts, ends, counts, segments) -> TrendCurve:
        parts = [
            adaptive_windows(starts[a:b], ends[a:b], counts[a:b], self.config.min_support)
            for a, b in segments
            if b > a
        ]
        if parts:
            table = pd.concat(parts, ignore_index=True)
        else:
            table = pd.DataFrame(columns=TREND_COLUMNS[:7])

        spread = self.config.sd * np.sqrt(table["count"].to_numpy(dtype=np.float64))
        width = table["width"].to_numpy(dtype=np.float64)
        table["lower"] = np.maximum(0.0, table["count"].to_numpy(dtype=np.float64) - spread) / width
        table["upper"] = (table["count"].to_numpy(dtype=np.float64) + spread) / width

        short = int((table["count"] < self.config.min_support).sum())
        if short:
            logger.warning(
                f"Group {group}: {short} position(s) below min_support={self.config.min_support} "
                "after exhausting the available fragments"
            )
        return TrendCurve(group=group, viewpoint=viewpoint, table=table[TREND_COLUMNS])


def _side_segments(midpoints: np.ndarray, viewpoint: Region):
    """Index ranges of fragments upstream and downstream of the viewpoint."""
    split = int(np.searchsorted(midpoints, viewpoint.midpoint, side="left"))
    return [(0, split), (split, len(midpoints))]


def adaptive_windows(
    starts: np.ndarray,
    ends: np.ndarray,
    counts: np.ndarray,
    min_support: float,
) -> pd.DataFrame:
    """Grow a symmetric window around each fragment until it holds ``min_support``.

    Step ``k`` covers fragments ``i - k .. i + k`` clipped to the array
    ends; the smallest ``k`` reaching the support is found by bisection
    on the cumulative counts. When the whole segment is short of
    support, the widest window is kept.

    Returns:
        DataFrame (position, rate, half_width, count, width, window_start,
        window_end).
    """
    n = len(starts)
    idx = np.arange(n)
    csum = np.concatenate(([0.0], np.cumsum(counts, dtype=np.float64)))

    def window_sum(k):
        lo = np.maximum(idx - k, 0)
        hi = np.minimum(idx + k, n - 1)
        return csum[hi + 1] - csum[lo]

    k_lo = np.zeros(n, dtype=np.int64)
    k_hi = np.maximum(idx, n - 1 - idx)
    while True:
        active = k_lo < k_hi
        if not active.any():
            break
        k_mid = (k_lo + k_hi) // 2
        reached = window_sum(k_mid) >= min_support
        k_hi = np.where(active & reached, k_mid, k_hi)
        k_lo = np.where(active & ~reached, k_mid + 1, k_lo)

    lo = np.maximum(idx - k_lo, 0)
    hi = np.minimum(idx + k_lo, n - 1)
    count = csum[hi + 1] - csum[lo]
    mids = (starts + ends) // 2
    width = ends[hi] - starts[lo]
    half_width = np.maximum(mids - starts[lo], ends[hi] - mids)

    return pd.DataFrame(
        {
            "position": mids.astype(np.int64),
            "rate": count / width,
            "half_width": half_width.astype(np.int64),
            "count": count,
            "width": width.astype(np.int64),
            "window_start": starts[lo].astype(np.int64),
            "window_end": ends[hi].astype(np.int64),
        }
    )
