"""
UMI-4C experiment assembly and normalization.

Builds the viewpoint-anchored contact matrix from per-sample contact
tables:
- Union fragment grid inside the analysis window, bait region excluded
- Zero-filled per-sample assay
- Column aggregation by a metadata grouping key
- Scaling of every group to the total of the reference group
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np
import pandas as pd

from .counting import ContactCounts
from .exceptions import (
    ConfigurationError,
    DataIntegrityError,
    EmptyResultError,
    validate_counts,
    validate_dataframe,
    validate_numeric_param,
)
from .genomic_utils import CHROM_COLS, END_COLS, START_COLS, Region, detect_column

logger = logging.getLogger(__name__)

METADATA_COLUMNS = ["sampleID", "replicate", "condition", "file"]
COUNT_COLS = ["count", "umis", "UMIs", "deduplicated_count"]

ContactTable = Union[pd.DataFrame, ContactCounts]


@dataclass
class ExperimentConfig:
    """Configuration for assembling an experiment."""
    bait_exclusion: int = 3_000  # Fragments closer than this to the viewpoint are dropped
    bait_expansion: int = 1_000_000  # Analysis half-width on each side
    grouping: str = "condition"
    ref_group: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "ExperimentConfig":
        from ..config import settings

        return cls(
            bait_exclusion=settings.bait_exclusion,
            bait_expansion=settings.bait_expansion,
            grouping=settings.grouping,
        )


class UMI4CExperiment:
    """
    Viewpoint-anchored UMI-4C contact container.

    Rows are the retained restriction fragments around one viewpoint;
    the raw assay has one column per sample, the grouped assays one
    column per group. Assays are fixed at construction; derived results
    (domainograms, trends, differential tests) are appended through
    :meth:`attach`.
    """

    def __init__(
        self,
        fragments: pd.DataFrame,
        raw_counts: pd.DataFrame,
        metadata: pd.DataFrame,
        viewpoint: Region,
        exclusion_region: Region,
        analysis_region: Region,
        grouping: str = "condition",
        ref_group: Optional[str] = None,
    ):
        self._fragments = fragments.reset_index(drop=True)
        self._raw = raw_counts.reset_index(drop=True)
        self._metadata = metadata.reset_index(drop=True)
        self._viewpoint = viewpoint
        self._exclusion_region = exclusion_region
        self._analysis_region = analysis_region
        self._artifacts: Dict[str, List[Any]] = {}

        if grouping not in self._metadata.columns:
            raise ConfigurationError(
                f"Grouping key '{grouping}' not found in sample metadata. "
                f"Available: {list(self._metadata.columns)}"
            )
        self._grouping = grouping

        sample_groups = dict(zip(self._metadata["sampleID"], self._metadata[grouping].astype(str)))
        self._sample_groups = {sid: sample_groups[sid] for sid in self._raw.columns}

        grouped = self._raw.T.groupby(pd.Series(self._sample_groups)).sum().T
        self._grouped = grouped.astype(np.int64)
        self._totals = self._grouped.sum(axis=0).astype(np.int64)

        empty = [g for g, t in self._totals.items() if t == 0]
        if empty:
            raise EmptyResultError("contacts", f"groups {empty} have no UMIs in {analysis_region}")

        if ref_group is None:
            ref_group = str(self._totals.idxmin())
        elif str(ref_group) not in self._totals.index:
            raise ConfigurationError(
                f"Reference group '{ref_group}' not among groups {list(self._totals.index)}"
            )
        self._ref_group = str(ref_group)

        ref_total = float(self._totals[self._ref_group])
        self._factors = {
            g: (1.0 if g == self._ref_group else ref_total / float(t))
            for g, t in self._totals.items()
        }
        self._normalized = self._grouped.astype(np.float64) * pd.Series(self._factors)

        logger.info(
            f"Experiment {viewpoint}: {len(self._fragments)} fragments, {self._raw.shape[1]} samples, "
            f"{len(self._factors)} groups by '{grouping}' (reference '{self._ref_group}')"
        )

    # ------------------------------------------------------------------
    # Assays
    # ------------------------------------------------------------------

    @property
    def raw_counts(self) -> pd.DataFrame:
        """Per-sample UMI counts (fragments x samples)."""
        return self._raw.copy()

    @property
    def grouped_counts(self) -> pd.DataFrame:
        """Raw counts summed by group (fragments x groups)."""
        return self._grouped.copy()

    @property
    def normalized_counts(self) -> pd.DataFrame:
        """Grouped counts scaled by the per-group normalization factors."""
        return self._normalized.copy()

    def assay(self, normalized: bool = True) -> pd.DataFrame:
        return self.normalized_counts if normalized else self.grouped_counts

    # ------------------------------------------------------------------
    # Rows, columns and metadata
    # ------------------------------------------------------------------

    @property
    def fragments(self) -> pd.DataFrame:
        """Retained fragments (chromosome, start, end), ordered by position."""
        return self._fragments.copy()

    @property
    def midpoints(self) -> np.ndarray:
        return ((self._fragments["start"] + self._fragments["end"]) // 2).to_numpy(dtype=np.int64)

    @property
    def samples(self) -> List[str]:
        return list(self._raw.columns)

    @property
    def groups(self) -> List[str]:
        return list(self._grouped.columns)

    @property
    def sample_groups(self) -> Dict[str, str]:
        return dict(self._sample_groups)

    @property
    def group_totals(self) -> Dict[str, int]:
        return {g: int(t) for g, t in self._totals.items()}

    @property
    def norm_factors(self) -> Dict[str, float]:
        return dict(self._factors)

    @property
    def reference_group(self) -> str:
        return self._ref_group

    @property
    def viewpoint(self) -> Region:
        return self._viewpoint

    @property
    def exclusion_region(self) -> Region:
        return self._exclusion_region

    @property
    def analysis_region(self) -> Region:
        return self._analysis_region

    @property
    def grouping(self) -> str:
        return self._grouping

    @property
    def metadata(self) -> pd.DataFrame:
        return self._metadata.copy()

    def regroup(self, grouping: str, ref_group: Optional[str] = None) -> "UMI4CExperiment":
        """New experiment over the same per-sample assay, grouped by another key."""
        return UMI4CExperiment(
            self._fragments,
            self._raw,
            self._metadata,
            self._viewpoint,
            self._exclusion_region,
            self._analysis_region,
            grouping=grouping,
            ref_group=ref_group,
        )

    # ------------------------------------------------------------------
    # Derived artifacts
    # ------------------------------------------------------------------

    def attach(self, kind: str, artifact: Any) -> None:
        """Append a derived artifact (``"domainogram"``, ``"trend"``, ``"differential"``)."""
        self._artifacts.setdefault(kind, []).append(artifact)

    def artifact(self, kind: str) -> Any:
        """Most recently attached artifact of ``kind``."""
        history = self._artifacts.get(kind)
        if not history:
            raise ConfigurationError(f"No '{kind}' artifact attached to experiment {self._viewpoint}")
        return history[-1]

    def artifact_history(self, kind: str) -> List[Any]:
        return list(self._artifacts.get(kind, []))

    @property
    def artifact_kinds(self) -> List[str]:
        return sorted(self._artifacts)

    def summary(self) -> Dict:
        return {
            "viewpoint": str(self._viewpoint),
            "analysis_region": str(self._analysis_region),
            "fragments": len(self._fragments),
            "samples": len(self.samples),
            "grouping": self._grouping,
            "groups": self.groups,
            "reference_group": self._ref_group,
            "group_totals": self.group_totals,
            "norm_factors": self.norm_factors,
        }

    def __repr__(self) -> str:
        return (
            f"UMI4CExperiment(viewpoint={self._viewpoint}, fragments={len(self._fragments)}, "
            f"samples={len(self.samples)}, groups={self.groups})"
        )


class ContactMatrixBuilder:
    """
    Assemble per-sample contact tables into a :class:`UMI4CExperiment`.

    Example:
        >>> builder = ContactMatrixBuilder(Region("chr1", 1_000_000, 1_000_500))
        >>> experiment = builder.build(contacts, metadata)
    """

    def __init__(self, viewpoint: Region, config: Optional[ExperimentConfig] = None):
        self.viewpoint = viewpoint
        self.config = config or ExperimentConfig()
        validate_numeric_param(self.config.bait_exclusion, "bait_exclusion", min_val=0)
        validate_numeric_param(self.config.bait_expansion, "bait_expansion", min_val=1)

    @property
    def exclusion_region(self) -> Region:
        return self.viewpoint.expand(self.config.bait_exclusion)

    @property
    def analysis_region(self) -> Region:
        return self.viewpoint.expand(self.config.bait_expansion)

    def build(
        self,
        contacts: Mapping[str, ContactTable],
        metadata: pd.DataFrame,
    ) -> UMI4CExperiment:
        """
        Build the experiment.

        Args:
            contacts: Sample id to contact table (chromosome, start, end,
                count) or ContactCounts.
            metadata: Sample metadata with sampleID, replicate, condition
                and file columns.

        Raises:
            ConfigurationError: Missing metadata or grouping column, or
                unknown reference group.
            DataIntegrityError: Duplicate or unmatched samples, invalid
                counts or conflicting fragment coordinates.
            EmptyResultError: No fragment left in the analysis window.
        """
        metadata = self._validate_metadata(metadata)
        sample_ids = metadata["sampleID"].tolist()

        unknown = sorted(set(contacts) - set(sample_ids))
        if unknown:
            raise DataIntegrityError(f"Contact tables for samples not in metadata: {unknown}")
        missing = [sid for sid in sample_ids if sid not in contacts]
        if missing:
            raise DataIntegrityError(f"No contact table for samples: {missing}")

        tables = {sid: self._prepare_table(sid, contacts[sid]) for sid in sample_ids}
        fragments = self._union_grid(tables)

        key = pd.MultiIndex.from_frame(fragments[["start", "end"]])
        raw = pd.DataFrame(
            {
                sid: (
                    tbl.groupby(["start", "end"])["count"].sum()
                    .reindex(key, fill_value=0)
                    .to_numpy(dtype=np.int64)
                )
                for sid, tbl in tables.items()
            },
            columns=sample_ids,
        )

        return UMI4CExperiment(
            fragments,
            raw,
            metadata,
            self.viewpoint,
            self.exclusion_region,
            self.analysis_region,
            grouping=self.config.grouping,
            ref_group=self.config.ref_group,
        )

    def build_from_files(
        self,
        metadata: pd.DataFrame,
        base_dir: Optional[Union[str, Path]] = None,
    ) -> UMI4CExperiment:
        """Build from the contact tables referenced by the metadata ``file`` column."""
        metadata = self._validate_metadata(metadata)
        base = Path(base_dir) if base_dir is not None else None
        contacts = {}
        for sid, fname in zip(metadata["sampleID"], metadata["file"]):
            path = Path(fname)
            if base is not None and not path.is_absolute():
                path = base / path
            contacts[sid] = read_contact_table(path)
        return self.build(contacts, metadata)

    # ------------------------------------------------------------------

    def _validate_metadata(self, metadata: pd.DataFrame) -> pd.DataFrame:
        validate_dataframe(metadata, "sample metadata", required_columns=METADATA_COLUMNS, min_rows=1)
        if self.config.grouping not in metadata.columns:
            raise ConfigurationError(
                f"Grouping key '{self.config.grouping}' not found in sample metadata. "
                f"Available: {list(metadata.columns)}"
            )
        metadata = metadata.copy()
        metadata["sampleID"] = metadata["sampleID"].astype(str)
        dups = metadata.loc[metadata["sampleID"].duplicated(), "sampleID"].unique().tolist()
        if dups:
            raise DataIntegrityError(f"Duplicate sample identifiers in metadata: {dups}")
        return metadata

    def _prepare_table(self, sample_id: str, table: ContactTable) -> pd.DataFrame:
        if isinstance(table, ContactCounts):
            table = table.to_table()
        validate_dataframe(table, f"contact table of sample '{sample_id}'")

        chrom_col = detect_column(table, CHROM_COLS, required=True)
        start_col = detect_column(table, START_COLS, required=True)
        end_col = detect_column(table, END_COLS, required=True)
        count_col = detect_column(table, COUNT_COLS, required=True)

        try:
            validate_counts(table[count_col], f"sample '{sample_id}'")
        except (TypeError, ValueError):
            raise DataIntegrityError(f"Non-numeric counts found in sample '{sample_id}'") from None

        df = pd.DataFrame(
            {
                "chromosome": table[chrom_col].astype(str).to_numpy(),
                "start": table[start_col].to_numpy(dtype=np.int64),
                "end": table[end_col].to_numpy(dtype=np.int64),
                "count": table[count_col].to_numpy(dtype=np.float64).astype(np.int64),
            }
        )
        if (df["end"] <= df["start"]).any() or (df["start"] < 0).any():
            raise DataIntegrityError(f"Invalid fragment coordinates in sample '{sample_id}'")

        region = self.analysis_region
        in_window = (
            (df["chromosome"] == region.chrom)
            & (df["start"] >= region.start)
            & (df["end"] <= region.end)
        )
        gap = np.maximum(0, np.maximum(df["start"] - self.viewpoint.end, self.viewpoint.start - df["end"]))
        kept = df[in_window & (gap >= self.config.bait_exclusion)]
        if kept.empty:
            logger.warning(f"Sample {sample_id}: no contacts left in {region} after bait exclusion")
        return kept

    def _union_grid(self, tables: Mapping[str, pd.DataFrame]) -> pd.DataFrame:
        coords = pd.concat([t[["start", "end"]] for t in tables.values()], ignore_index=True)
        coords = coords.drop_duplicates().sort_values(["start", "end"]).reset_index(drop=True)
        if coords.empty:
            raise EmptyResultError(
                "fragments",
                f"none within {self.analysis_region} outside the {self.config.bait_exclusion} bp bait exclusion",
            )
        if coords["start"].duplicated().any() or (coords["start"].to_numpy()[1:] < coords["end"].to_numpy()[:-1]).any():
            raise DataIntegrityError(
                f"Overlapping fragment coordinates across samples on {self.viewpoint.chrom}; "
                "contact tables must come from the same digestion"
            )
        coords.insert(0, "chromosome", self.viewpoint.chrom)
        return coords


def read_contact_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read a tab-separated per-sample contact table."""
    return pd.read_csv(path, sep="\t")
