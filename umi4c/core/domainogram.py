"""
Multi-scale contact smoothing (domainogram).

For every retained fragment and every scale, sums the counts of all
fragments whose midpoint lies inside a window anchored on that fragment.
At scale ``k`` the fragment interval is widened by ``k - 1`` median
fragment widths, so the grid spans from single-fragment resolution up to
roughly ``max_scale`` fragments.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .batch_processor import BatchProcessor
from .exceptions import ConfigurationError, validate_numeric_param
from .genomic_utils import Region

logger = logging.getLogger(__name__)


@dataclass
class DomainogramConfig:
    """Configuration for domainogram computation."""
    max_scale: int = 150  # Largest window, in median fragment widths
    normalize: bool = False  # Divide window sums by the window span in bases
    use_normalized: bool = True  # Smooth the normalized assay rather than grouped raw counts

    @classmethod
    def from_settings(cls) -> "DomainogramConfig":
        from ..config import settings

        return cls(max_scale=settings.domainogram_max_scale)


@dataclass
class Domainogram:
    """Smoothed intensity grids (scale x position), one per group."""

    viewpoint: Region
    positions: np.ndarray
    scales: np.ndarray
    window_widths: np.ndarray
    grids: Dict[str, np.ndarray] = field(default_factory=dict)
    normalized: bool = False

    @property
    def groups(self) -> List[str]:
        return list(self.grids)

    def __getitem__(self, group: str) -> pd.DataFrame:
        """Grid of one group as a DataFrame (rows: scale, columns: position)."""
        if group not in self.grids:
            raise ConfigurationError(f"Group '{group}' not in domainogram. Available: {self.groups}")
        return pd.DataFrame(
            self.grids[group],
            index=pd.Index(self.scales, name="scale"),
            columns=pd.Index(self.positions, name="position"),
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Long table (group, scale, window_width, position, value)."""
        n_scales, n_pos = len(self.scales), len(self.positions)
        frames = []
        for group, grid in self.grids.items():
            frames.append(
                pd.DataFrame(
                    {
                        "group": group,
                        "scale": np.repeat(self.scales, n_pos),
                        "window_width": np.repeat(self.window_widths, n_pos),
                        "position": np.tile(self.positions, n_scales),
                        "value": grid.ravel(),
                    }
                )
            )
        if not frames:
            return pd.DataFrame(columns=["group", "scale", "window_width", "position", "value"])
        return pd.concat(frames, ignore_index=True)


class DomainogramEngine:
    """Compute domainograms for every group of an experiment."""

    def __init__(self, config: Optional[DomainogramConfig] = None, max_workers: int = 1):
        self.config = config or DomainogramConfig()
        validate_numeric_param(self.config.max_scale, "max_scale", min_val=1)
        self.max_workers = max_workers

    def compute(self, experiment, attach: bool = True) -> Domainogram:
        """
        Compute the domainogram of every group.

        Args:
            experiment: UMI4CExperiment to smooth.
            attach: Attach the result to the experiment.

        Returns:
            Domainogram with one grid per group.
        """
        fragments = experiment.fragments
        positions = experiment.midpoints
        starts = fragments["start"].to_numpy(dtype=np.int64)
        ends = fragments["end"].to_numpy(dtype=np.int64)
        unit = float(np.median(ends - starts))
        scales = np.arange(1, self.config.max_scale + 1, dtype=np.int64)
        # Nominal width; each window is its fragment plus (k - 1) units
        widths = scales * unit

        assay = experiment.assay(normalized=self.config.use_normalized)
        tasks = {
            group: (
                smooth_counts,
                (starts, ends, assay[group].to_numpy(dtype=np.float64), unit, scales, self.config.normalize),
            )
            for group in assay.columns
        }
        grids = BatchProcessor(self.max_workers, name="domainogram").run(tasks, sort_key=str)

        result = Domainogram(
            viewpoint=experiment.viewpoint,
            positions=positions,
            scales=scales,
            window_widths=widths,
            grids=grids,
            normalized=self.config.normalize,
        )
        logger.info(
            f"Domainogram for {experiment.viewpoint}: {len(grids)} group(s), "
            f"{len(scales)} scales, {len(positions)} positions (unit {unit:.0f} bp)"
        )
        if attach:
            experiment.attach("domainogram", result)
        return result


def smooth_counts(
    starts: np.ndarray,
    ends: np.ndarray,
    counts: np.ndarray,
    unit: float,
    scales: np.ndarray,
    normalize: bool = False,
) -> np.ndarray:
    """Window sums of ``counts`` around each fragment for every scale.

    The window of fragment ``i`` at scale ``k`` is its own interval widened
    by ``(k - 1) * unit / 2`` on each side, half-open:
    ``[starts[i] - pad, ends[i] + pad)``. Fragment ``j`` contributes when
    its midpoint falls inside, so scale 1 is the fragment's own count
    whatever the neighbouring widths. Fragments must be sorted and
    non-overlapping.

    Returns:
        Array of shape (len(scales), len(starts)).
    """
    starts = np.asarray(starts, dtype=np.float64)
    ends = np.asarray(ends, dtype=np.float64)
    mids = np.floor((starts + ends) / 2.0)
    csum = np.concatenate(([0.0], np.cumsum(counts, dtype=np.float64)))
    grid = np.empty((len(scales), len(starts)), dtype=np.float64)

    for row, scale in enumerate(scales):
        pad = (scale - 1) * unit / 2.0
        lo = np.searchsorted(mids, starts - pad, side="left")
        hi = np.searchsorted(mids, ends + pad, side="left")
        grid[row] = csum[hi] - csum[lo]
        if normalize:
            grid[row] /= (ends - starts) + 2.0 * pad
    return grid
