"""
Quality Control for UMI-4C samples.

Per-sample stage counters collected while splitting, aligning and
counting reads:
- Bait-specific read rate
- Mapping rate of split fragments
- UMI duplication rate
- Per-sample QC report with threshold warnings
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class StageCounters:
    """Read and molecule counts for one sample across pipeline stages."""

    sample_id: str

    # Splitting
    specific_reads: int = 0
    filtered_reads: int = 0
    split_fragments: int = 0

    # Alignment
    mapped_reads: int = 0
    unmapped_reads: int = 0

    # Counting
    umi_count: int = 0

    warnings: List[str] = field(default_factory=list)

    @property
    def total_reads(self) -> int:
        return self.specific_reads + self.filtered_reads

    @property
    def specific_rate(self) -> float:
        return self.specific_reads / self.total_reads if self.total_reads else 0.0

    @property
    def mapping_rate(self) -> float:
        aligned = self.mapped_reads + self.unmapped_reads
        return self.mapped_reads / aligned if aligned else 0.0

    @property
    def duplication_rate(self) -> float:
        """Fraction of mapped reads collapsed by UMI deduplication."""
        if not self.mapped_reads:
            return 0.0
        return max(0.0, 1.0 - self.umi_count / self.mapped_reads)

    def update(self, other: "StageCounters") -> "StageCounters":
        """Add the counts of ``other`` (same sample) into this instance."""
        for f in fields(self):
            if f.name in ("sample_id", "warnings"):
                continue
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        self.warnings.extend(other.warnings)
        return self

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "sample_id": self.sample_id,
            "total_reads": self.total_reads,
            "specific_reads": self.specific_reads,
            "filtered_reads": self.filtered_reads,
            "specific_rate": self.specific_rate,
            "split_fragments": self.split_fragments,
            "mapped_reads": self.mapped_reads,
            "unmapped_reads": self.unmapped_reads,
            "mapping_rate": self.mapping_rate,
            "umi_count": self.umi_count,
            "duplication_rate": self.duplication_rate,
            "qc_warnings": list(self.warnings),
        }


class QCAnalyzer:
    """Threshold checks over per-sample stage counters."""

    # QC thresholds
    MIN_SPECIFIC_RATE = 0.50
    MIN_MAPPING_RATE = 0.70
    MIN_UMI_COUNT = 1000

    def __init__(
        self,
        min_specific_rate: float = MIN_SPECIFIC_RATE,
        min_mapping_rate: float = MIN_MAPPING_RATE,
        min_umi_count: int = MIN_UMI_COUNT,
    ):
        self.min_specific_rate = min_specific_rate
        self.min_mapping_rate = min_mapping_rate
        self.min_umi_count = min_umi_count

    def check(self, counters: StageCounters) -> List[str]:
        """Return QC warnings for one sample (empty when it passes)."""
        warnings = []

        if counters.total_reads and counters.specific_rate < self.min_specific_rate:
            warnings.append(
                f"Low bait specificity: {counters.specific_rate:.1%} (threshold: {self.min_specific_rate:.1%})"
            )

        if counters.mapped_reads + counters.unmapped_reads and counters.mapping_rate < self.min_mapping_rate:
            warnings.append(
                f"Low mapping rate: {counters.mapping_rate:.1%} (threshold: {self.min_mapping_rate:.1%})"
            )

        if counters.umi_count == 0:
            warnings.append("No UMIs counted; possible failed sample")
        elif counters.umi_count < self.min_umi_count:
            warnings.append(f"Low UMI count: {counters.umi_count} (threshold: {self.min_umi_count})")

        return warnings

    def generate_qc_report(
        self,
        counters: Mapping[str, StageCounters],
        output_path: Optional[Union[str, Path]] = None,
    ) -> pd.DataFrame:
        """
        Generate a QC report for multiple samples.

        Args:
            counters: Sample id to StageCounters
            output_path: Optional path to save a CSV report

        Returns:
            DataFrame with one row per sample
        """
        df = summarize_counters(counters)
        if df.empty:
            return df

        checks = {sid: self.check(c) for sid, c in counters.items()}
        df["qc_warnings"] = [list(counters[sid].warnings) + checks[sid] for sid in df["sample_id"]]
        df["pass_qc"] = [not checks[sid] for sid in df["sample_id"]]
        df["qc_status"] = df["pass_qc"].map({True: "PASS", False: "WARN"})

        for sid, warns in checks.items():
            for w in warns:
                logger.warning(f"Sample {sid}: {w}")

        if output_path is not None:
            df.to_csv(output_path, index=False)
            logger.info(f"QC report saved to: {output_path}")

        return df


def summarize_counters(counters: Mapping[str, StageCounters]) -> pd.DataFrame:
    """Per-sample QC table ordered by sample id."""
    rows = [counters[sid].to_dict() for sid in sorted(counters)]
    if not rows:
        return pd.DataFrame(columns=list(StageCounters("").to_dict()))
    return pd.DataFrame(rows)
