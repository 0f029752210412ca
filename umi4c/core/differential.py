"""
Differential Contact Analysis Module

Tests, region by region, whether the share of a group's UMIs falling in
the region differs between the two groups of an experiment:
- Query regions given explicitly or tiled over the analysis window
- Low-count filter on the combined count of both groups
- Two-sided Fisher exact test on [[n1, N1-n1], [n2, N2-n2]]
- Benjamini-Hochberg FDR across all regions of one call
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from .exceptions import (
    ConfigurationError,
    EmptyResultError,
    InvalidParameterError,
    validate_numeric_param,
)
from .genomic_utils import (
    Region,
    assign_by_midpoint,
    regions_from_dataframe,
    regions_to_dataframe,
    tile_region,
)

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["region_chr", "region_start", "region_end", "n1", "N1", "n2", "N2", "p_value", "p_adj"]


@dataclass
class DifferentialConfig:
    """Configuration for differential contact testing."""
    window_size: int = 5_000  # Tile width when no query regions are given
    resize: Optional[int] = None  # Resize query regions around their midpoint
    min_counts: int = 30  # Drop regions with n1 + n2 below this
    alpha: float = 0.05  # Significance level on adjusted p-values

    @classmethod
    def from_settings(cls) -> "DifferentialConfig":
        from ..config import settings

        return cls(
            window_size=settings.differential_window_size,
            min_counts=settings.differential_min_counts,
            alpha=settings.differential_alpha,
        )


@dataclass
class DifferentialResult:
    """Per-region test results for one reference/other group pair."""
    viewpoint: Region
    grouping: str
    reference_group: str
    other_group: str
    alpha: float
    table: pd.DataFrame = field(default_factory=pd.DataFrame)
    dropped_regions: List[str] = field(default_factory=list)

    @property
    def significant(self) -> pd.DataFrame:
        """Regions with adjusted p-value below ``alpha``, by p-value."""
        df = self.to_dataframe(order="pvalue")
        return df[df["significant"]].reset_index(drop=True)

    @property
    def n_tested(self) -> int:
        return len(self.table)

    def to_dataframe(self, order: str = "pvalue", include_counts: bool = True) -> pd.DataFrame:
        """
        Result table.

        Args:
            order: ``"pvalue"`` (ascending raw p-value, ties by position) or
                ``"position"``.
            include_counts: Keep n1, N1, n2, N2 columns.
        """
        if order == "pvalue":
            df = self.table.sort_values(["p_value", "region_start"], kind="stable")
        elif order == "position":
            df = self.table.sort_values(["region_chr", "region_start", "region_end"], kind="stable")
        else:
            raise InvalidParameterError("order", order, "'pvalue' or 'position'")

        if not include_counts:
            df = df.drop(columns=["n1", "N1", "n2", "N2"])
        return df.reset_index(drop=True)

    def summary(self) -> Dict:
        n_sig = int(self.table["significant"].sum()) if len(self.table) else 0
        return {
            "viewpoint": str(self.viewpoint),
            "grouping": self.grouping,
            "reference_group": self.reference_group,
            "other_group": self.other_group,
            "regions_tested": self.n_tested,
            "regions_dropped": len(self.dropped_regions),
            "significant_regions": n_sig,
            "alpha": self.alpha,
        }

    def save(self, output_path: Union[str, Path]) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe(order="position").to_csv(output_path, sep="\t", index=False)
        logger.info(f"Differential results saved to {output_path}")
        return output_path


class DifferentialTester:
    """
    Fisher exact test of contact differences between two groups.

    Workflow:
    1. Check that the grouping resolves to exactly two groups
    2. Build query regions (explicit, resized or tiled)
    3. Sum grouped raw UMIs per region (fragment assigned by midpoint)
    4. Filter low-count regions
    5. Fisher exact test and BH correction
    """

    def __init__(self, config: Optional[DifferentialConfig] = None):
        self.config = config or DifferentialConfig()
        validate_numeric_param(self.config.window_size, "window_size", min_val=1)
        validate_numeric_param(self.config.min_counts, "min_counts", min_val=0)
        validate_numeric_param(self.config.alpha, "alpha", min_val=0, max_val=1)
        if self.config.resize is not None:
            validate_numeric_param(self.config.resize, "resize", min_val=1)

    def run(
        self,
        experiment,
        regions: Optional[Union[Sequence[Region], pd.DataFrame]] = None,
        attach: bool = True,
    ) -> DifferentialResult:
        """
        Run the differential test on an experiment.

        Args:
            experiment: UMI4CExperiment with exactly two groups.
            regions: Query regions (Regions or a BED-like table); tiles the
                analysis region when omitted.
            attach: Attach the result to the experiment.

        Raises:
            ConfigurationError: If the grouping does not give exactly two groups.
            EmptyResultError: If no region survives filtering.
        """
        reference, other = self._resolve_groups(experiment)
        logger.info(
            f"Differential test on {experiment.viewpoint}: '{reference}' (reference) vs '{other}'"
        )

        query, dropped = self._query_regions(experiment, regions)
        if not query:
            raise EmptyResultError("regions", f"no query region overlaps {experiment.analysis_region}")

        counts = experiment.grouped_counts
        totals = experiment.group_totals
        N1, N2 = int(totals[reference]), int(totals[other])

        regions_df = regions_to_dataframe(query)
        hits = assign_by_midpoint(regions_df, experiment.fragments.rename(columns={"chromosome": "chr"}))
        n1 = np.bincount(
            hits["query_idx"].to_numpy(dtype=np.int64),
            weights=counts[reference].to_numpy()[hits["subject_idx"].to_numpy(dtype=np.int64)],
            minlength=len(query),
        ).astype(np.int64)
        n2 = np.bincount(
            hits["query_idx"].to_numpy(dtype=np.int64),
            weights=counts[other].to_numpy()[hits["subject_idx"].to_numpy(dtype=np.int64)],
            minlength=len(query),
        ).astype(np.int64)

        keep = (n1 + n2) >= self.config.min_counts
        n_low = int((~keep).sum())
        if n_low:
            logger.info(f"Dropped {n_low} region(s) with fewer than {self.config.min_counts} UMIs")
        if not keep.any():
            raise EmptyResultError(
                "regions", f"none has at least {self.config.min_counts} UMIs across both groups"
            )

        tested = regions_df[keep].reset_index(drop=True)
        n1, n2 = n1[keep], n2[keep]

        p_values = np.array(
            [fisher_test(a, N1, b, N2) for a, b in zip(n1, n2)],
            dtype=np.float64,
        )
        p_adj = stats.false_discovery_control(p_values, method="bh")

        table = pd.DataFrame(
            {
                "region_chr": tested["chr"],
                "region_start": tested["start"],
                "region_end": tested["end"],
                "region_name": tested["name"],
                "n1": n1,
                "N1": N1,
                "n2": n2,
                "N2": N2,
                "p_value": p_values,
                "p_adj": p_adj,
            }
        )
        table["significant"] = table["p_adj"] < self.config.alpha

        result = DifferentialResult(
            viewpoint=experiment.viewpoint,
            grouping=experiment.grouping,
            reference_group=reference,
            other_group=other,
            alpha=self.config.alpha,
            table=table,
            dropped_regions=dropped,
        )
        logger.info(
            f"Tested {len(table)} region(s); {int(table['significant'].sum())} significant at "
            f"adjusted p < {self.config.alpha}"
        )
        if attach:
            experiment.attach("differential", result)
        return result

    def _resolve_groups(self, experiment):
        groups = list(experiment.groups)
        reference = experiment.reference_group
        if len(groups) < 2:
            raise ConfigurationError(
                f"Grouping '{experiment.grouping}' has a single value {groups}; exactly two are required"
            )
        others = [g for g in groups if g != reference]
        if len(groups) > 2:
            raise ConfigurationError(
                f"Grouping '{experiment.grouping}' has {len(groups)} values; exactly two are required "
                f"(reference '{reference}', other '{others[0]}', extra: {others[1:]})"
            )
        return reference, others[0]

    def _query_regions(self, experiment, regions):
        window = experiment.analysis_region
        if regions is None:
            return tile_region(window, self.config.window_size), []

        if isinstance(regions, pd.DataFrame):
            regions = regions_from_dataframe(regions)
        if self.config.resize is not None:
            regions = [r.resize(self.config.resize) for r in regions]

        kept, dropped = [], []
        for r in regions:
            if r.overlaps(window):
                kept.append(r)
            else:
                label = r.name or str(r)
                dropped.append(label)
                logger.warning(f"Region {label} lies outside the analysis window {window}; skipped")
        return kept, dropped


def fisher_test(n1: int, N1: int, n2: int, N2: int) -> float:
    """Two-sided Fisher exact p-value for [[n1, N1-n1], [n2, N2-n2]]."""
    _, p = stats.fisher_exact([[int(n1), int(N1 - n1)], [int(n2), int(N2 - n2)]], alternative="two-sided")
    return float(p)
