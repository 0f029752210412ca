"""
Core analysis modules for umi4c.

Includes:
- In-silico restriction digestion
- Read splitting at restriction sites
- UMI deduplication into fragment contact counts
- Experiment assembly and normalization
- Domainogram and adaptive trend smoothing
- Differential contact testing (Fisher exact + FDR)
- Quality control counters
"""

# Digestion and read processing
from .digestion import DigestedGenome, GenomeDigester, RestrictionEnzyme, RestrictionFragment
from .splitting import ReadSplitter, SplitRead, write_fastq
from .alignment import Bowtie2Aligner, read_fragment_hits
from .counting import ContactCounter, ContactCounts

# Experiment container
from .experiment import ContactMatrixBuilder, ExperimentConfig, UMI4CExperiment, read_contact_table

# Smoothing
from .domainogram import Domainogram, DomainogramConfig, DomainogramEngine
from .trend import AdaptiveTrendEngine, Trend, TrendConfig, TrendCurve, TrendPoint

# Differential analysis
from .differential import DifferentialConfig, DifferentialResult, DifferentialTester

# Quality control
from .qc import QCAnalyzer, StageCounters, summarize_counters

# Pipeline wiring
from .pipeline import PipelineConfig, PipelineContext, UMI4CPipeline

# Shared genomic utilities (region model, interval-tree overlap)
from .genomic_utils import (
    Region,
    tile_region,
    find_overlaps,
    assign_by_midpoint,
    detect_column,
    sort_chromosomes,
)

from .batch_processor import BatchProcessor, BatchError

__all__ = [
    # Digestion and reads
    "DigestedGenome",
    "GenomeDigester",
    "RestrictionEnzyme",
    "RestrictionFragment",
    "ReadSplitter",
    "SplitRead",
    "write_fastq",
    "Bowtie2Aligner",
    "read_fragment_hits",
    "ContactCounter",
    "ContactCounts",

    # Experiment
    "ContactMatrixBuilder",
    "ExperimentConfig",
    "UMI4CExperiment",
    "read_contact_table",

    # Smoothing
    "Domainogram",
    "DomainogramConfig",
    "DomainogramEngine",
    "AdaptiveTrendEngine",
    "Trend",
    "TrendConfig",
    "TrendCurve",
    "TrendPoint",

    # Differential analysis
    "DifferentialConfig",
    "DifferentialResult",
    "DifferentialTester",

    # Quality control
    "QCAnalyzer",
    "StageCounters",
    "summarize_counters",

    # Pipeline
    "PipelineConfig",
    "PipelineContext",
    "UMI4CPipeline",

    # Utilities
    "Region",
    "tile_region",
    "find_overlaps",
    "assign_by_midpoint",
    "detect_column",
    "sort_chromosomes",
    "BatchProcessor",
    "BatchError",
]
