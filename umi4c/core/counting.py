"""
UMI-based contact counting.

Collapses a sample's (fragment, UMI) observations into one count per
distinct molecule and fragment, keeping only fragments within a maximum
distance of the viewpoint.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Tuple, Union

import numpy as np
import pandas as pd

from .batch_processor import BatchProcessor
from .digestion import DigestedGenome
from .exceptions import DataIntegrityError, validate_dataframe, validate_numeric_param
from .genomic_utils import Region

logger = logging.getLogger(__name__)

CONTACT_COLUMNS = ["chromosome", "start", "end", "count"]

Pairs = Union[pd.DataFrame, Iterable[Tuple[int, str]]]


@dataclass(frozen=True)
class ContactCounts:
    """Deduplicated UMI counts of one sample; absent fragments count 0."""

    sample_id: str
    chromosome: str
    table: pd.DataFrame  # fragment_index, start, end, count

    @property
    def total(self) -> int:
        """Final deduplicated UMI count."""
        return int(self.table["count"].sum())

    def __len__(self) -> int:
        return len(self.table)

    def as_dict(self) -> Dict[int, int]:
        return dict(zip(self.table["fragment_index"].tolist(), self.table["count"].tolist()))

    def to_table(self) -> pd.DataFrame:
        """Per-sample contact table (chromosome, start, end, count)."""
        out = self.table[["start", "end", "count"]].copy()
        out.insert(0, "chromosome", self.chromosome)
        return out.reset_index(drop=True)


class ContactCounter:
    """
    Count distinct (fragment, UMI) molecules per sample.

    Args:
        genome: Digested genome providing the fragment coordinates.
        viewpoint: Bait region; only its chromosome is counted.
        max_distance: Fragments farther than this from the viewpoint
            (gap between intervals) are ignored.
    """

    def __init__(self, genome: DigestedGenome, viewpoint: Region, max_distance: int = 10_000_000):
        validate_numeric_param(max_distance, "max_distance", min_val=0)
        self.genome = genome
        self.viewpoint = viewpoint
        self.max_distance = int(max_distance)

        frags = genome.fragments_table(viewpoint.chrom)
        gap = np.maximum.reduce([
            np.zeros(len(frags), dtype=np.int64),
            frags["start"].to_numpy() - viewpoint.end,
            viewpoint.start - frags["end"].to_numpy(),
        ])
        self._fragments = frags.assign(distance=gap)
        self._in_range = frags.index[gap <= self.max_distance]

    @property
    def n_fragments(self) -> int:
        return len(self._fragments)

    def count(self, pairs: Pairs, sample_id: str = "sample") -> ContactCounts:
        """
        Count one sample.

        Args:
            pairs: DataFrame with ``fragment_index``/``umi`` columns, or an
                iterable of ``(fragment_index, umi)`` tuples.
            sample_id: Used in log and error messages.

        Raises:
            DataIntegrityError: Naming the sample when a fragment index is
                negative or unknown to the viewpoint chromosome.
        """
        df = self._as_frame(pairs, sample_id)

        idx = df["fragment_index"].to_numpy()
        bad = (idx < 0) | (idx >= self.n_fragments)
        if bad.any():
            raise DataIntegrityError(
                f"Sample '{sample_id}': {int(bad.sum())} fragment index(es) outside "
                f"0..{self.n_fragments - 1} on {self.viewpoint.chrom} (e.g. {int(idx[bad][0])})"
            )

        df = df[df["fragment_index"].isin(self._in_range)]
        counts = (
            df.drop_duplicates(["fragment_index", "umi"])
            .groupby("fragment_index")
            .size()
            .sort_index()
        )

        frags = self._fragments.loc[counts.index]
        table = pd.DataFrame(
            {
                "fragment_index": counts.index.to_numpy(dtype=np.int64),
                "start": frags["start"].to_numpy(dtype=np.int64),
                "end": frags["end"].to_numpy(dtype=np.int64),
                "count": counts.to_numpy(dtype=np.int64),
            }
        )
        result = ContactCounts(sample_id, self.viewpoint.chrom, table)

        if result.total == 0:
            logger.warning(f"Sample {sample_id}: no UMIs within {self.max_distance} bp of the viewpoint")
        else:
            logger.info(f"Sample {sample_id}: {result.total} UMIs on {len(result)} fragments")
        return result

    def count_samples(
        self,
        pairs_by_sample: Mapping[str, Pairs],
        max_workers: int = 1,
    ) -> Dict[str, ContactCounts]:
        """Count several samples as independent tasks, ordered by sample id."""
        tasks = {sid: (self.count, (pairs, sid)) for sid, pairs in pairs_by_sample.items()}
        return BatchProcessor(max_workers, name="count").run(tasks, sort_key=str)

    @staticmethod
    def _as_frame(pairs: Pairs, sample_id: str) -> pd.DataFrame:
        if isinstance(pairs, pd.DataFrame):
            validate_dataframe(pairs, f"pairs of sample '{sample_id}'", required_columns=["fragment_index", "umi"])
            df = pairs[["fragment_index", "umi"]]
        else:
            df = pd.DataFrame(list(pairs), columns=["fragment_index", "umi"])

        if df.empty:
            return pd.DataFrame({"fragment_index": np.array([], dtype=np.int64), "umi": []})
        if not pd.api.types.is_integer_dtype(df["fragment_index"]):
            raise DataIntegrityError(f"Sample '{sample_id}': fragment indexes must be integers")
        return df.astype({"fragment_index": np.int64})
