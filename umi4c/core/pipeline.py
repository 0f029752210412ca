"""
UMI-4C analysis pipeline.

Wires the stages together through an explicit :class:`PipelineContext`:

    digest -> split -> align -> count -> build -> domainogram / trend / differential

Each stage reads what it needs from the context and stores its output
there; nothing is passed through files or working-directory state
except the FASTQ/BAM handed to the external aligner.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from .alignment import Bowtie2Aligner, read_fragment_hits
from .counting import ContactCounter, ContactCounts, Pairs
from .differential import DifferentialConfig, DifferentialResult, DifferentialTester
from .digestion import DigestedGenome, GenomeDigester, RestrictionEnzyme
from .domainogram import Domainogram, DomainogramConfig, DomainogramEngine
from .exceptions import ConfigurationError, PipelineError
from .experiment import ContactMatrixBuilder, ExperimentConfig, UMI4CExperiment
from .genomic_utils import Region
from .qc import QCAnalyzer, StageCounters
from .splitting import ReadSplitter, SplitRead, write_fastq
from .trend import AdaptiveTrendEngine, Trend, TrendConfig

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Configuration for one viewpoint's UMI-4C analysis."""
    viewpoint: Region
    bait_sequence: str
    bait_pad: str = ""
    enzyme: str = "DpnII"

    # Splitting and counting
    min_fragment_length: int = 20
    max_distance: int = 10_000_000
    umi_separator: str = ":"
    min_mapq: int = 0

    # Stage options
    experiment: ExperimentConfig = field(default_factory=ExperimentConfig)
    domainogram: DomainogramConfig = field(default_factory=DomainogramConfig)
    trend: TrendConfig = field(default_factory=TrendConfig)
    differential: DifferentialConfig = field(default_factory=DifferentialConfig)

    # Resources
    max_workers: int = 4
    output_dir: Optional[str] = None

    @classmethod
    def from_settings(cls, viewpoint: Region, bait_sequence: str, bait_pad: str = "") -> "PipelineConfig":
        from ..config import settings

        return cls(
            viewpoint=viewpoint,
            bait_sequence=bait_sequence,
            bait_pad=bait_pad,
            enzyme=settings.default_enzyme,
            min_fragment_length=settings.min_fragment_length,
            max_distance=settings.max_contact_distance,
            experiment=ExperimentConfig.from_settings(),
            domainogram=DomainogramConfig.from_settings(),
            trend=TrendConfig.from_settings(),
            differential=DifferentialConfig.from_settings(),
            max_workers=settings.max_workers,
            output_dir=str(settings.results_dir),
        )


@dataclass
class PipelineContext:
    """Everything produced so far for one viewpoint."""
    config: PipelineConfig
    genome: Optional[DigestedGenome] = None
    split_reads: Dict[str, List[SplitRead]] = field(default_factory=dict)
    hits: Dict[str, pd.DataFrame] = field(default_factory=dict)
    counters: Dict[str, StageCounters] = field(default_factory=dict)
    contacts: Dict[str, ContactCounts] = field(default_factory=dict)
    experiment: Optional[UMI4CExperiment] = None
    domainogram: Optional[Domainogram] = None
    trend: Optional[Trend] = None
    differential: Optional[DifferentialResult] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def sample_counters(self, sample_id: str) -> StageCounters:
        if sample_id not in self.counters:
            self.counters[sample_id] = StageCounters(sample_id=sample_id)
        return self.counters[sample_id]

    def require(self, attr: str):
        value = getattr(self, attr)
        if value is None or (isinstance(value, dict) and not value):
            raise PipelineError(f"Pipeline stage output '{attr}' is missing; run the earlier stage first")
        return value

    def qc_report(self, output_path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
        return QCAnalyzer().generate_qc_report(self.counters, output_path)


class UMI4CPipeline:
    """
    Run the UMI-4C stages for one viewpoint.

    Example:
        >>> pipeline = UMI4CPipeline(config)
        >>> ctx = pipeline.new_context()
        >>> pipeline.digest(ctx, sequences)
        >>> pipeline.split(ctx, "ctrl_1", records)
        >>> ...
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.enzyme = RestrictionEnzyme.from_name(config.enzyme)

    def new_context(self) -> PipelineContext:
        return PipelineContext(config=self.config)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def digest(
        self,
        ctx: PipelineContext,
        sequences: Optional[Mapping[str, str]] = None,
        fasta: Optional[Union[str, Path]] = None,
    ) -> PipelineContext:
        """Digest the viewpoint chromosome from sequences or an indexed FASTA."""
        digester = GenomeDigester(self.enzyme, max_workers=self.config.max_workers)
        chromosomes = [self.config.viewpoint.chrom]
        if fasta is not None:
            ctx.genome = digester.digest_fasta(fasta, chromosomes=chromosomes)
        elif sequences is not None:
            ctx.genome = digester.digest(sequences, chromosomes=chromosomes)
        else:
            raise ConfigurationError("digest needs either sequences or a FASTA path")
        return ctx

    def split(
        self,
        ctx: PipelineContext,
        sample_id: str,
        records: Iterable[Tuple[str, str, Optional[str]]],
    ) -> PipelineContext:
        """Split one sample's reads at the first restriction site after the bait."""
        splitter = ReadSplitter(
            self.enzyme,
            self.config.bait_sequence,
            self.config.bait_pad,
            min_fragment_length=self.config.min_fragment_length,
        )
        reads, counters = splitter.split_reads(records, sample_id=sample_id)
        ctx.split_reads[sample_id] = reads
        ctx.sample_counters(sample_id).update(counters)
        return ctx

    def align(
        self,
        ctx: PipelineContext,
        sample_id: str,
        aligner: Bowtie2Aligner,
        work_dir: Optional[Union[str, Path]] = None,
    ) -> PipelineContext:
        """Align a sample's split reads and collect its fragment hits."""
        genome = ctx.require("genome")
        if sample_id not in ctx.split_reads:
            raise PipelineError(f"No split reads for sample '{sample_id}'")

        work_dir = Path(work_dir or self.config.output_dir or ".")
        fastq = write_fastq(ctx.split_reads[sample_id], work_dir / f"{sample_id}.split.fastq.gz")
        bam = aligner.align(fastq, work_dir / f"{sample_id}.bam", sample_id=sample_id)

        hits, counters = read_fragment_hits(
            bam,
            genome,
            self.config.viewpoint.chrom,
            umi_separator=self.config.umi_separator,
            min_mapq=self.config.min_mapq,
            sample_id=sample_id,
        )
        ctx.hits[sample_id] = hits
        ctx.sample_counters(sample_id).update(counters)
        return ctx

    def add_hits(self, ctx: PipelineContext, sample_id: str, pairs: Pairs) -> PipelineContext:
        """Register (fragment_index, UMI) pairs produced outside the pipeline."""
        ctx.hits[sample_id] = pairs if isinstance(pairs, pd.DataFrame) else pd.DataFrame(
            list(pairs), columns=["fragment_index", "umi"]
        )
        ctx.sample_counters(sample_id)
        return ctx

    def count(self, ctx: PipelineContext) -> PipelineContext:
        """Deduplicate UMIs of every sample with hits."""
        genome = ctx.require("genome")
        hits = ctx.require("hits")
        counter = ContactCounter(genome, self.config.viewpoint, max_distance=self.config.max_distance)
        ctx.contacts = counter.count_samples(hits, max_workers=self.config.max_workers)
        for sid, contacts in ctx.contacts.items():
            ctx.sample_counters(sid).umi_count = contacts.total
        return ctx

    def build(self, ctx: PipelineContext, metadata: pd.DataFrame) -> PipelineContext:
        """Assemble the experiment from the counted samples."""
        contacts = ctx.require("contacts")
        builder = ContactMatrixBuilder(self.config.viewpoint, self.config.experiment)
        ctx.experiment = builder.build(contacts, metadata)
        return ctx

    def analyze(
        self,
        ctx: PipelineContext,
        regions: Optional[Union[Sequence[Region], pd.DataFrame]] = None,
    ) -> PipelineContext:
        """Domainogram, trend and differential test on the built experiment.

        A grouping that does not resolve to two groups only skips the
        differential test; the error is logged and kept in ``ctx.errors``.
        """
        experiment = ctx.require("experiment")
        workers = self.config.max_workers

        ctx.domainogram = DomainogramEngine(self.config.domainogram, max_workers=workers).compute(experiment)
        ctx.trend = AdaptiveTrendEngine(self.config.trend, max_workers=workers).compute(experiment)

        try:
            ctx.differential = DifferentialTester(self.config.differential).run(experiment, regions)
        except ConfigurationError as e:
            logger.warning(f"Differential test skipped: {e}")
            ctx.errors["differential"] = str(e)
            ctx.differential = None
        return ctx
