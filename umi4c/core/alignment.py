"""
Alignment of split reads and extraction of fragment hits.

The aligner itself is an external program: Bowtie2 output is piped
into ``samtools view`` to produce a BAM. Alignments are then read back
with pysam and turned into (fragment_index, UMI) pairs for counting.
"""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import pysam

from .digestion import DigestedGenome
from .exceptions import AlignmentError, ConfigurationError, DataIntegrityError
from .qc import StageCounters

logger = logging.getLogger(__name__)


class Bowtie2Aligner:
    """
    Single-end Bowtie2 alignment piped into a BAM file.

    Args:
        index: Bowtie2 index prefix of the reference genome.
        threads: Aligner threads.
        bowtie2_path, samtools_path: Executables.
        extra_args: Additional Bowtie2 arguments.
    """

    def __init__(
        self,
        index: str,
        threads: int = 4,
        bowtie2_path: str = "bowtie2",
        samtools_path: str = "samtools",
        extra_args: Optional[List[str]] = None,
    ):
        if not index:
            raise ConfigurationError("A Bowtie2 index prefix is required")
        self.index = str(index)
        self.threads = threads
        self.bowtie2 = bowtie2_path
        self.samtools = samtools_path
        self.extra_args = list(extra_args or [])

    @classmethod
    def from_settings(cls, index: str) -> "Bowtie2Aligner":
        from ..config import settings

        return cls(
            index,
            threads=settings.threads,
            bowtie2_path=settings.bowtie2_path,
            samtools_path=settings.samtools_path,
        )

    def build_command(self, fastq: Union[str, Path], output_bam: Union[str, Path]) -> str:
        """Shell pipeline ``bowtie2 ... | samtools view -b -o output_bam -``."""
        bowtie2 = [
            self.bowtie2,
            "-x", self.index,
            "-U", str(fastq),
            "-p", str(self.threads),
            *self.extra_args,
        ]
        samtools = [self.samtools, "view", "-b", "-o", str(output_bam), "-"]
        return f"{shlex.join(bowtie2)} | {shlex.join(samtools)}"

    def align(
        self,
        fastq: Union[str, Path],
        output_bam: Union[str, Path],
        sample_id: Optional[str] = None,
    ) -> Path:
        """
        Align ``fastq`` and write ``output_bam``.

        Returns:
            Path to the BAM file.

        Raises:
            AlignmentError: If the pipeline exits with a non-zero status.
        """
        sample_id = sample_id or Path(fastq).name
        output_bam = Path(output_bam)
        output_bam.parent.mkdir(parents=True, exist_ok=True)

        cmd = self.build_command(fastq, output_bam)
        logger.info(f"Aligning {sample_id}")
        logger.debug(f"Command: {cmd}")

        result = subprocess.run(
            ["bash", "-o", "pipefail", "-c", cmd],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            logger.error(f"Alignment failed for {sample_id} (exit status {result.returncode})")
            raise AlignmentError(sample_id, result.returncode, result.stderr or "")

        # Bowtie2 writes its alignment summary to stderr
        if result.stderr:
            logger.debug(result.stderr.strip())
        return output_bam


def read_fragment_hits(
    bam: Union[str, Path],
    genome: DigestedGenome,
    chromosome: str,
    umi_separator: str = ":",
    min_mapq: int = 0,
    sample_id: Optional[str] = None,
) -> Tuple[pd.DataFrame, StageCounters]:
    """
    Map primary alignments on ``chromosome`` to restriction fragments.

    The 5' end of each alignment selects the fragment; the UMI is the
    read-name suffix after the last ``umi_separator``.

    Returns:
        Tuple of (DataFrame with fragment_index and umi columns,
        StageCounters with mapped_reads and unmapped_reads).
    """
    sample_id = sample_id or Path(bam).name
    counters = StageCounters(sample_id=sample_id)
    positions: List[int] = []
    umis: List[str] = []

    with pysam.AlignmentFile(str(bam), "rb", check_sq=False) as fh:
        for read in fh.fetch(until_eof=True):
            if read.is_secondary or read.is_supplementary:
                continue
            if read.is_unmapped or read.mapping_quality < min_mapq:
                counters.unmapped_reads += 1
                continue
            counters.mapped_reads += 1
            if read.reference_name != chromosome:
                continue

            name = read.query_name
            if umi_separator not in name:
                raise DataIntegrityError(
                    f"Sample '{sample_id}': read '{name}' has no UMI after '{umi_separator}'"
                )
            umis.append(name.rsplit(umi_separator, 1)[1])
            positions.append(read.reference_end - 1 if read.is_reverse else read.reference_start)

    indices = genome.fragment_indices(chromosome, np.asarray(positions, dtype=np.int64))
    outside = int((indices < 0).sum())
    if outside:
        raise DataIntegrityError(
            f"Sample '{sample_id}': {outside} alignment(s) outside the digested {chromosome}"
        )

    hits = pd.DataFrame({"fragment_index": indices.astype(np.int64), "umi": umis})
    logger.info(
        f"Sample {sample_id}: {counters.mapped_reads} mapped, {counters.unmapped_reads} unmapped, "
        f"{len(hits)} hits on {chromosome}"
    )
    return hits, counters
