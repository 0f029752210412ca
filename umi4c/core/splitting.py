"""
Read splitting at restriction sites.

UMI-4C reads start with the bait primer and the sequence padding up to
the bait's restriction site. The first restriction site found after that
region marks the ligation junction; the read is split there so the
captured (contact) part can be aligned on its own.
"""

import gzip
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from .digestion import RestrictionEnzyme
from .exceptions import ConfigurationError, validate_numeric_param
from .qc import StageCounters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitRead:
    """A read split into ordered pieces (quality strings split alike)."""

    name: str
    sequences: Tuple[str, ...]
    qualities: Optional[Tuple[str, ...]] = None

    def __len__(self) -> int:
        return len(self.sequences)

    def records(self):
        """Yield ``(name, sequence, quality)`` for every piece."""
        quals = self.qualities or (None,) * len(self.sequences)
        for seq, qual in zip(self.sequences, quals):
            yield self.name, seq, qual


class ReadSplitter:
    """
    Split bait-specific reads at the first restriction site after the bait.

    Args:
        enzyme: Restriction enzyme whose motif marks the junction.
        bait_sequence: Bait primer sequence every specific read starts with.
        bait_pad: Sequence between the primer and the bait restriction site.
        min_fragment_length: Pieces shorter than this are dropped by
            :meth:`split_reads`.
    """

    def __init__(
        self,
        enzyme: RestrictionEnzyme,
        bait_sequence: str,
        bait_pad: str = "",
        min_fragment_length: int = 20,
    ):
        if not bait_sequence:
            raise ConfigurationError("bait_sequence must not be empty")
        validate_numeric_param(min_fragment_length, "min_fragment_length", min_val=0)

        self.enzyme = enzyme
        self.bait_sequence = bait_sequence.upper()
        self.bait_pad = (bait_pad or "").upper()
        self.min_fragment_length = int(min_fragment_length)
        self._pattern = re.compile(re.escape(enzyme.motif))

    @property
    def search_offset(self) -> int:
        """First read position searched for the restriction motif."""
        return len(self.bait_sequence) + len(self.bait_pad)

    def is_specific(self, sequence: str) -> bool:
        """True when the read starts with bait + pad."""
        return sequence.upper().startswith(self.bait_sequence + self.bait_pad)

    def cut_position(self, sequence: str) -> Optional[int]:
        """Cut coordinate of the first motif at or after the bait region, or None."""
        m = self._pattern.search(sequence.upper(), self.search_offset)
        if m is None:
            return None
        return m.start() + self.enzyme.cut_offset

    def split(self, sequence: str) -> List[str]:
        """Split ``sequence`` into a leading fragment and a remainder.

        Returns the whole read as a single piece when no motif occurs
        after the bait region. Empty pieces are never returned.
        """
        cut = self.cut_position(sequence)
        if cut is None:
            return [sequence]
        return [piece for piece in (sequence[:cut], sequence[cut:]) if piece]

    def split_record(self, name: str, sequence: str, quality: Optional[str] = None) -> SplitRead:
        """Split a read and its quality string at the same coordinate."""
        if quality is not None and len(quality) != len(sequence):
            raise ConfigurationError(
                f"Read '{name}': quality length {len(quality)} != sequence length {len(sequence)}"
            )
        cut = self.cut_position(sequence)
        bounds = [0, len(sequence)] if cut is None else [0, cut, len(sequence)]
        spans = [(s, e) for s, e in zip(bounds[:-1], bounds[1:]) if e > s]

        sequences = tuple(sequence[s:e] for s, e in spans)
        qualities = None if quality is None else tuple(quality[s:e] for s, e in spans)
        return SplitRead(name, sequences, qualities)

    def split_reads(
        self,
        records: Iterable[Tuple[str, str, Optional[str]]],
        sample_id: str = "sample",
    ) -> Tuple[List[SplitRead], StageCounters]:
        """
        Split every bait-specific read of a sample.

        Args:
            records: ``(name, sequence, quality)`` tuples.
            sample_id: Sample identifier for the returned counters.

        Returns:
            Tuple of (split reads, StageCounters with specific_reads,
            filtered_reads and split_fragments filled in).
        """
        counters = StageCounters(sample_id=sample_id)
        result: List[SplitRead] = []

        for name, sequence, quality in records:
            if not self.is_specific(sequence):
                counters.filtered_reads += 1
                continue
            counters.specific_reads += 1

            split = self.split_record(name, sequence, quality)
            keep = [i for i, s in enumerate(split.sequences) if len(s) >= self.min_fragment_length]
            if not keep:
                continue
            split = SplitRead(
                split.name,
                tuple(split.sequences[i] for i in keep),
                None if split.qualities is None else tuple(split.qualities[i] for i in keep),
            )
            counters.split_fragments += len(split)
            result.append(split)

        logger.info(
            f"Sample {sample_id}: {counters.specific_reads} specific reads, "
            f"{counters.filtered_reads} filtered, {counters.split_fragments} fragments"
        )
        if counters.specific_reads == 0:
            logger.warning(f"Sample {sample_id}: no read starts with the bait sequence")
        return result, counters


def write_fastq(reads: Iterable[SplitRead], path: Union[str, Path]) -> Path:
    """Write split pieces as FASTQ (gzip when the path ends in .gz).

    Pieces without a quality string get a constant placeholder quality.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "wt") as fh:
        for read in reads:
            for name, seq, qual in read.records():
                fh.write(f"@{name}\n{seq}\n+\n{qual if qual is not None else 'I' * len(seq)}\n")
    return path
