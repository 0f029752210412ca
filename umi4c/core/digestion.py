"""
In-silico restriction digestion.

Scans chromosome sequences for a restriction motif and partitions each
chromosome into contiguous, non-overlapping restriction fragments that
cover ``[0, chromosome_length)``.

Usage:
    from umi4c.core.digestion import GenomeDigester, RestrictionEnzyme

    digester = GenomeDigester(RestrictionEnzyme("DpnII", "GATC", 0))
    genome = digester.digest({"chr1": "AAGATCTT"})
    genome.to_dataframe()
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
import pysam

from .batch_processor import BatchProcessor
from .exceptions import (
    ConfigurationError,
    DataIntegrityError,
    validate_dataframe,
)
from .genomic_utils import sort_chromosomes

logger = logging.getLogger(__name__)

DIGEST_COLUMNS = ["chromosome", "start", "end", "fragment_index"]

_VALID_BASES = frozenset("ACGT")


@dataclass(frozen=True)
class RestrictionEnzyme:
    """Restriction enzyme recognition motif and forward-strand cut offset."""

    name: str
    motif: str
    cut_offset: int = 0

    def __post_init__(self):
        object.__setattr__(self, "motif", str(self.motif).upper())
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError for an unusable motif or cut offset."""
        if not self.motif:
            raise ConfigurationError(f"Enzyme '{self.name}' has an empty motif")
        bad = set(self.motif) - _VALID_BASES
        if bad:
            raise ConfigurationError(
                f"Enzyme '{self.name}' motif '{self.motif}' contains invalid characters: {sorted(bad)}"
            )
        if not isinstance(self.cut_offset, (int, np.integer)) or not 0 <= self.cut_offset <= len(self.motif):
            raise ConfigurationError(
                f"Enzyme '{self.name}' cut offset {self.cut_offset} outside [0, {len(self.motif)}]"
            )

    @classmethod
    def from_name(cls, name: Optional[str] = None) -> "RestrictionEnzyme":
        """Resolve a named preset (DpnII, NlaIII, ...) from the package settings."""
        from ..config import settings

        preset = settings.get_enzyme(name)
        return cls(preset["name"], preset["motif"], preset["cut_offset"])

    def find_cut_sites(self, sequence: str) -> np.ndarray:
        """Return sorted cut coordinates of every motif occurrence in ``sequence``.

        Occurrences are found by non-overlapping leftmost-first scanning,
        case-insensitively.
        """
        pattern = re.escape(self.motif)
        return np.fromiter(
            (m.start() + self.cut_offset for m in re.finditer(pattern, sequence.upper())),
            dtype=np.int64,
        )


@dataclass(frozen=True)
class RestrictionFragment:
    """One restriction fragment; ``index`` is its rank within the chromosome."""

    chromosome: str
    start: int
    end: int
    index: int

    @property
    def width(self) -> int:
        return self.end - self.start

    @property
    def midpoint(self) -> int:
        return (self.start + self.end) // 2


class DigestedGenome:
    """Read-only mapping of chromosome to its ordered restriction fragments."""

    def __init__(
        self,
        fragments: Mapping[str, Tuple[RestrictionFragment, ...]],
        warnings: Iterable[str] = (),
        enzyme: Optional[RestrictionEnzyme] = None,
    ):
        ordered = {c: tuple(fragments[c]) for c in sort_chromosomes(list(fragments))}
        self._fragments = MappingProxyType(ordered)
        self._starts = {
            c: np.array([f.start for f in frags], dtype=np.int64) for c, frags in ordered.items()
        }
        self._warnings = tuple(warnings)
        self._enzyme = enzyme

    # ------------------------------------------------------------------
    # Mapping interface
    # ------------------------------------------------------------------

    @property
    def chromosomes(self) -> List[str]:
        return list(self._fragments)

    @property
    def warnings(self) -> Tuple[str, ...]:
        """Non-fatal conditions met while digesting (motif-free chromosomes)."""
        return self._warnings

    @property
    def enzyme(self) -> Optional[RestrictionEnzyme]:
        return self._enzyme

    def __getitem__(self, chromosome: str) -> Tuple[RestrictionFragment, ...]:
        try:
            return self._fragments[chromosome]
        except KeyError:
            raise ConfigurationError(
                f"Chromosome '{chromosome}' not in digested genome. Available: {self.chromosomes}"
            ) from None

    def __contains__(self, chromosome: str) -> bool:
        return chromosome in self._fragments

    def __iter__(self):
        return iter(self._fragments)

    def __len__(self) -> int:
        return len(self._fragments)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DigestedGenome):
            return NotImplemented
        return dict(self._fragments) == dict(other._fragments)

    def n_fragments(self, chromosome: Optional[str] = None) -> int:
        if chromosome is not None:
            return len(self[chromosome])
        return sum(len(f) for f in self._fragments.values())

    def chrom_sizes(self) -> Dict[str, int]:
        return {c: (frags[-1].end if frags else 0) for c, frags in self._fragments.items()}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def subset(self, chromosomes: Iterable[str]) -> "DigestedGenome":
        """Return a new genome restricted to ``chromosomes``."""
        chromosomes = list(chromosomes)
        missing = [c for c in chromosomes if c not in self._fragments]
        if missing:
            raise ConfigurationError(f"Chromosomes not in digested genome: {missing}")
        return DigestedGenome(
            {c: self._fragments[c] for c in chromosomes},
            warnings=[w for w in self._warnings if any(f"'{c}'" in w for c in chromosomes)],
            enzyme=self._enzyme,
        )

    def fragment_at(self, chromosome: str, position: int) -> RestrictionFragment:
        """Return the fragment containing ``position`` (binary search)."""
        frags = self[chromosome]
        if not frags or position < 0 or position >= frags[-1].end:
            raise DataIntegrityError(
                f"Position {position} outside chromosome '{chromosome}' (length {frags[-1].end if frags else 0})"
            )
        idx = int(np.searchsorted(self._starts[chromosome], position, side="right")) - 1
        return frags[idx]

    def fragment_indices(self, chromosome: str, positions) -> np.ndarray:
        """Vectorised ``fragment_at`` returning fragment indices (-1 when outside)."""
        positions = np.asarray(positions, dtype=np.int64)
        frags = self[chromosome]
        length = frags[-1].end if frags else 0
        idx = np.searchsorted(self._starts[chromosome], positions, side="right") - 1
        idx[(positions < 0) | (positions >= length)] = -1
        return idx

    def fragments_table(self, chromosome: str) -> pd.DataFrame:
        """Fragment table for one chromosome, indexed by fragment index."""
        frags = self[chromosome]
        return pd.DataFrame(
            {
                "chromosome": chromosome,
                "start": np.array([f.start for f in frags], dtype=np.int64),
                "end": np.array([f.end for f in frags], dtype=np.int64),
            },
            index=pd.Index([f.index for f in frags], name="fragment_index"),
        )

    # ------------------------------------------------------------------
    # Table conversion and persistence
    # ------------------------------------------------------------------

    def to_dataframe(self) -> pd.DataFrame:
        """Digest table (chromosome, start, end, fragment_index)."""
        rows = [
            (f.chromosome, f.start, f.end, f.index)
            for frags in self._fragments.values()
            for f in frags
        ]
        df = pd.DataFrame(rows, columns=DIGEST_COLUMNS)
        for col in DIGEST_COLUMNS[1:]:
            df[col] = df[col].astype(np.int64)
        return df

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        chrom_sizes: Optional[Mapping[str, int]] = None,
    ) -> "DigestedGenome":
        """Rebuild a genome from a digest table.

        Raises:
            DataIntegrityError: If fragments are empty, out of chromosome
                bounds, not contiguous from 0 or not indexed 0..n-1.
        """
        validate_dataframe(df, "digest table", required_columns=DIGEST_COLUMNS)
        fragments: Dict[str, Tuple[RestrictionFragment, ...]] = {}

        for chrom, grp in df.groupby("chromosome", sort=False):
            chrom = str(chrom)
            grp = grp.sort_values("fragment_index")
            starts = grp["start"].to_numpy(dtype=np.int64)
            ends = grp["end"].to_numpy(dtype=np.int64)
            indices = grp["fragment_index"].to_numpy(dtype=np.int64)

            if (ends <= starts).any():
                raise DataIntegrityError(f"Fragment with end <= start on chromosome '{chrom}'")
            if starts[0] != 0 or (starts[1:] != ends[:-1]).any():
                raise DataIntegrityError(f"Fragments on chromosome '{chrom}' are not contiguous from 0")
            if not np.array_equal(indices, np.arange(len(indices))):
                raise DataIntegrityError(f"Fragment indices on chromosome '{chrom}' are not 0..{len(indices) - 1}")
            if chrom_sizes is not None:
                if chrom not in chrom_sizes:
                    raise DataIntegrityError(f"No size given for chromosome '{chrom}'")
                if ends[-1] != int(chrom_sizes[chrom]):
                    raise DataIntegrityError(
                        f"Fragments on chromosome '{chrom}' end at {ends[-1]}, "
                        f"chromosome length is {chrom_sizes[chrom]}"
                    )

            fragments[chrom] = tuple(
                RestrictionFragment(chrom, int(s), int(e), int(i))
                for s, e, i in zip(starts, ends, indices)
            )

        return cls(fragments)

    def save(self, path: Union[str, Path]) -> Path:
        """Write the digest table as TSV."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe().to_csv(path, sep="\t", index=False)
        logger.info(f"Saved {self.n_fragments()} fragments to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path], chrom_sizes: Optional[Mapping[str, int]] = None) -> "DigestedGenome":
        """Read a digest table written by :meth:`save`."""
        df = pd.read_csv(path, sep="\t", dtype={"chromosome": str})
        return cls.from_dataframe(df, chrom_sizes=chrom_sizes)

    def __repr__(self) -> str:
        return f"DigestedGenome(chromosomes={len(self)}, fragments={self.n_fragments()})"


class GenomeDigester:
    """
    Digest chromosome sequences with a restriction enzyme.

    Each chromosome is digested as an independent task; results are
    merged in natural chromosome order.
    """

    def __init__(self, enzyme: Union[RestrictionEnzyme, str, None] = None, max_workers: int = 1):
        if enzyme is None or isinstance(enzyme, str):
            enzyme = RestrictionEnzyme.from_name(enzyme)
        self.enzyme = enzyme
        self.max_workers = max_workers

    def digest(
        self,
        sequences: Mapping[str, str],
        chromosomes: Optional[Iterable[str]] = None,
    ) -> DigestedGenome:
        """Digest ``sequences`` (chromosome -> sequence).

        Args:
            sequences: Chromosome name to sequence (any case).
            chromosomes: Optional subset of chromosomes to digest.

        Returns:
            DigestedGenome with one fragment tuple per chromosome.
        """
        if chromosomes is not None:
            chromosomes = list(chromosomes)
            missing = [c for c in chromosomes if c not in sequences]
            if missing:
                raise ConfigurationError(f"Chromosomes not found in sequences: {missing}")
        else:
            chromosomes = list(sequences)

        tasks = {c: (self._digest_chromosome, (c, sequences[c])) for c in chromosomes}
        rank = {c: i for i, c in enumerate(sort_chromosomes(chromosomes))}
        results = BatchProcessor(self.max_workers, name="digest").run(tasks, sort_key=rank.get)

        fragments = {c: frags for c, (frags, _) in results.items()}
        warnings = [w for _, w in results.values() if w]
        for w in warnings:
            logger.warning(w)

        genome = DigestedGenome(fragments, warnings=warnings, enzyme=self.enzyme)
        logger.info(
            f"Digested {len(genome)} chromosome(s) with {self.enzyme.name}: "
            f"{genome.n_fragments()} fragments"
        )
        return genome

    def digest_fasta(
        self,
        path: Union[str, Path],
        chromosomes: Optional[Iterable[str]] = None,
    ) -> DigestedGenome:
        """Digest chromosomes read from an indexed FASTA file."""
        with pysam.FastaFile(str(path)) as fasta:
            names = list(chromosomes) if chromosomes is not None else list(fasta.references)
            missing = [c for c in names if c not in fasta.references]
            if missing:
                raise ConfigurationError(f"Chromosomes not found in {path}: {missing}")
            sequences = {c: fasta.fetch(c) for c in names}
        return self.digest(sequences)

    def _digest_chromosome(self, chromosome: str, sequence: str):
        length = len(sequence)
        if length == 0:
            raise DataIntegrityError(f"Chromosome '{chromosome}' has an empty sequence")

        sites = self.enzyme.find_cut_sites(sequence)
        cuts = np.unique(sites[(sites > 0) & (sites < length)])
        bounds = np.concatenate(([0], cuts, [length]))

        fragments = tuple(
            RestrictionFragment(chromosome, int(s), int(e), i)
            for i, (s, e) in enumerate(zip(bounds[:-1], bounds[1:]))
        )

        warning = None
        if not len(sites):
            warning = (
                f"No {self.enzyme.name} site ({self.enzyme.motif}) found on chromosome "
                f"'{chromosome}'; kept as a single fragment"
            )
        return fragments, warning
