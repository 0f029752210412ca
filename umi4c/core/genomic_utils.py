"""
Shared genomic utilities for umi4c.

Provides the ``Region`` interval model used for viewpoints, analysis
windows and query regions, NCLS (Nested Containment List) interval
indexing for assigning fragments to regions, and shared helpers for
region tables and chromosome sorting.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from ncls import NCLS

from .exceptions import DataIntegrityError, InvalidParameterError

logger = logging.getLogger(__name__)


# ============================================================================
# Region model
# ============================================================================

_REGION_RE = re.compile(r"^(?P<chrom>[^:\s]+):(?P<start>[\d,]+)-(?P<end>[\d,]+)$")


@dataclass(frozen=True)
class Region:
    """Half-open genomic interval ``[start, end)`` on one chromosome."""

    chrom: str
    start: int
    end: int
    name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "chrom", str(self.chrom))
        object.__setattr__(self, "start", int(self.start))
        object.__setattr__(self, "end", int(self.end))
        if self.start < 0 or self.end < self.start:
            raise DataIntegrityError(
                f"Invalid region {self.chrom}:{self.start}-{self.end}"
            )

    @classmethod
    def parse(cls, text: str, name: Optional[str] = None) -> "Region":
        """Parse ``chr:start-end`` (commas allowed in the numbers)."""
        m = _REGION_RE.match(text.strip())
        if not m:
            raise InvalidParameterError("region", text, "chrom:start-end")
        return cls(
            m.group("chrom"),
            int(m.group("start").replace(",", "")),
            int(m.group("end").replace(",", "")),
            name=name,
        )

    @property
    def width(self) -> int:
        return self.end - self.start

    @property
    def midpoint(self) -> int:
        return (self.start + self.end) // 2

    def overlaps(self, other: "Region") -> bool:
        return self.chrom == other.chrom and self.start < other.end and other.start < self.end

    def contains(self, other: "Region") -> bool:
        return self.chrom == other.chrom and self.start <= other.start and other.end <= self.end

    def distance_to(self, other: "Region") -> float:
        """Gap in bases between two regions; 0 when they overlap, inf across chromosomes."""
        if self.chrom != other.chrom:
            return float("inf")
        return max(0, other.start - self.end, self.start - other.end)

    def expand(self, bases: int) -> "Region":
        """Grow the region by ``bases`` on each side (clipped at 0)."""
        return Region(self.chrom, max(0, self.start - int(bases)), self.end + int(bases), self.name)

    def resize(self, width: int) -> "Region":
        """Return a region of ``width`` bases centred on this region's midpoint."""
        if width <= 0:
            raise InvalidParameterError("width", width, "> 0")
        start = max(0, self.midpoint - int(width) // 2)
        return Region(self.chrom, start, start + int(width), self.name)

    def __str__(self) -> str:
        return f"{self.chrom}:{self.start}-{self.end}"


def tile_region(region: Region, window_size: int) -> List[Region]:
    """Split ``region`` into contiguous windows of ``window_size`` bases.

    The last window is truncated at the region end.
    """
    if window_size <= 0:
        raise InvalidParameterError("window_size", window_size, "> 0")
    starts = np.arange(region.start, region.end, int(window_size), dtype=np.int64)
    return [
        Region(region.chrom, int(s), int(min(s + window_size, region.end)))
        for s in starts
    ]


# ============================================================================
# Core overlap functions
# ============================================================================


def _build_ncls_index(
    starts: np.ndarray, ends: np.ndarray
) -> NCLS:
    """Build an NCLS index from start/end arrays."""
    ids = np.arange(len(starts), dtype=np.int64)
    return NCLS(
        np.asarray(starts, dtype=np.int64),
        np.asarray(ends, dtype=np.int64),
        ids,
    )


def find_overlaps(
    query_df: pd.DataFrame,
    subject_df: pd.DataFrame,
    chrom_col: str = "chr",
    start_col: str = "start",
    end_col: str = "end",
    min_overlap_bp: int = 1,
) -> pd.DataFrame:
    """Find overlapping intervals between two DataFrames.

    Parameters
    ----------
    query_df : pd.DataFrame
        Query intervals (the "left" set).
    subject_df : pd.DataFrame
        Subject intervals (the "right" set to search against).
    chrom_col : str
        Column name for chromosome in both DataFrames.
    start_col, end_col : str
        Column names for interval boundaries.
    min_overlap_bp : int
        Minimum overlap in base pairs (default 1).

    Returns
    -------
    pd.DataFrame
        Columns [query_idx, subject_idx, overlap_bp], one row per
        overlapping pair, ordered by query then subject.
    """
    columns = ["query_idx", "subject_idx", "overlap_bp"]
    if query_df.empty or subject_df.empty:
        return pd.DataFrame(columns=columns, dtype=np.int64)

    results: List[Tuple[int, int, int]] = []

    subject_groups = {name: grp for name, grp in subject_df.groupby(chrom_col, sort=False)}

    for chrom, q_grp in query_df.groupby(chrom_col, sort=False):
        if chrom not in subject_groups:
            continue
        s_grp = subject_groups[chrom]

        q_starts = q_grp[start_col].to_numpy()
        q_ends = q_grp[end_col].to_numpy()
        q_indices = q_grp.index.to_numpy()

        s_starts = s_grp[start_col].to_numpy()
        s_ends = s_grp[end_col].to_numpy()
        s_indices = s_grp.index.to_numpy()

        ncls = _build_ncls_index(s_starts, s_ends)
        for i in range(len(q_starts)):
            qs, qe = int(q_starts[i]), int(q_ends[i])
            # NCLS.find_overlap returns an iterator of (start, end, id) tuples
            for _s_start, _s_end, s_local_idx in ncls.find_overlap(qs, qe):
                ovlp = min(qe, int(_s_end)) - max(qs, int(_s_start))
                if ovlp < min_overlap_bp:
                    continue
                results.append((int(q_indices[i]), int(s_indices[int(s_local_idx)]), ovlp))

    if not results:
        return pd.DataFrame(columns=columns, dtype=np.int64)

    out = pd.DataFrame(results, columns=columns)
    return out.sort_values(["query_idx", "subject_idx"], kind="stable").reset_index(drop=True)


def assign_by_midpoint(
    regions_df: pd.DataFrame,
    fragments_df: pd.DataFrame,
    chrom_col: str = "chr",
) -> pd.DataFrame:
    """Assign each fragment to every region containing its midpoint.

    Returns [query_idx, subject_idx] pairs where ``query_idx`` indexes
    ``regions_df`` and ``subject_idx`` indexes ``fragments_df``.
    """
    mids = (fragments_df["start"] + fragments_df["end"]) // 2
    points = pd.DataFrame(
        {chrom_col: fragments_df[chrom_col], "start": mids, "end": mids + 1},
        index=fragments_df.index,
    )
    hits = find_overlaps(regions_df, points, chrom_col=chrom_col)
    return hits[["query_idx", "subject_idx"]]


# ============================================================================
# Region table utilities
# ============================================================================

CHROM_COLS = ["chr", "chrom", "chromosome", "seqnames", "#chr", "region_chr"]
START_COLS = ["start", "chromStart", "region_start"]
END_COLS = ["end", "chromEnd", "region_end"]
NAME_COLS = ["name", "region_id", "id"]


def detect_column(df: pd.DataFrame, candidates: List[str], required: bool = False) -> Optional[str]:
    """Find the first matching column name from a list of candidates.

    Parameters
    ----------
    df : pd.DataFrame
    candidates : list of str
        Column names to search for (case-insensitive).
    required : bool
        If True, raise MissingColumnError when not found.

    Returns
    -------
    str or None
    """
    from .exceptions import MissingColumnError

    cols_lower = {str(c).lower(): c for c in df.columns}
    for cand in candidates:
        if cand.lower() in cols_lower:
            return cols_lower[cand.lower()]
    if required:
        raise MissingColumnError(candidates[0], "region table", available=list(df.columns))
    return None


def regions_from_dataframe(df: pd.DataFrame) -> List[Region]:
    """Build Regions from a BED-like table with flexible column names."""
    chrom_col = detect_column(df, CHROM_COLS, required=True)
    start_col = detect_column(df, START_COLS, required=True)
    end_col = detect_column(df, END_COLS, required=True)
    name_col = detect_column(df, NAME_COLS)
    return [
        Region(
            row[chrom_col],
            row[start_col],
            row[end_col],
            None if name_col is None else str(row[name_col]),
        )
        for _, row in df.iterrows()
    ]


def regions_to_dataframe(regions: List[Region]) -> pd.DataFrame:
    """Convert Regions to a [chr, start, end, name] table."""
    return pd.DataFrame(
        {
            "chr": [r.chrom for r in regions],
            "start": np.array([r.start for r in regions], dtype=np.int64),
            "end": np.array([r.end for r in regions], dtype=np.int64),
            "name": [r.name if r.name is not None else str(r) for r in regions],
        }
    )


# ============================================================================
# Chromosome utilities
# ============================================================================

_CHROM_ORDER = {f"chr{i}": i for i in range(1, 23)}
_CHROM_ORDER.update({"chrX": 23, "chrY": 24, "chrM": 25, "chrMT": 25})


def sort_chromosomes(chroms: List[str]) -> List[str]:
    """Sort chromosome names in natural order (1,2,...,22,X,Y,M)."""
    def _sort_key(c: str) -> Tuple[int, str]:
        c_stripped = c.replace("chr", "") if c.startswith("chr") else c
        if c in _CHROM_ORDER:
            return (_CHROM_ORDER[c], c)
        try:
            return (int(c_stripped), c)
        except ValueError:
            return (100, c)
    return sorted(chroms, key=_sort_key)
