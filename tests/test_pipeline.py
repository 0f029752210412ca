"""
Integration tests for the UMI-4C pipeline.
"""

from unittest.mock import Mock

import pandas as pd
import pytest

from umi4c.core.domainogram import DomainogramConfig
from umi4c.core.exceptions import ConfigurationError, PipelineError
from umi4c.core.experiment import ExperimentConfig
from umi4c.core.pipeline import PipelineConfig, UMI4CPipeline
from umi4c.core.qc import StageCounters
from umi4c.core.trend import TrendConfig

from conftest import FRAGMENT_WIDTH

BAIT = "ACGTACGTAC"


def _pairs_from_table(table):
    """One (fragment, UMI) pair per counted molecule, each molecule seen twice."""
    pairs = []
    for start, count in zip(table["start"], table["count"]):
        frag = int(start) // FRAGMENT_WIDTH
        for j in range(int(count)):
            pairs.extend([(frag, f"U{j}"), (frag, f"U{j}")])
    return pairs


@pytest.fixture
def config(viewpoint):
    return PipelineConfig(
        viewpoint=viewpoint,
        bait_sequence=BAIT,
        experiment=ExperimentConfig(bait_exclusion=3_000, bait_expansion=50_000),
        domainogram=DomainogramConfig(max_scale=5),
        trend=TrendConfig(min_support=20),
        max_workers=2,
    )


@pytest.fixture
def pipeline(config):
    return UMI4CPipeline(config)


@pytest.fixture
def counted(pipeline, chromosome_sequence, contact_tables):
    ctx = pipeline.new_context()
    pipeline.digest(ctx, sequences={"chr1": chromosome_sequence, "chr2": "GATC" * 10})
    for sid, table in contact_tables.items():
        pipeline.add_hits(ctx, sid, _pairs_from_table(table))
    return pipeline.count(ctx)


class TestPipelineStages:

    def test_digest_only_viewpoint_chromosome(self, pipeline, chromosome_sequence):
        """Test only the viewpoint chromosome is digested."""
        ctx = pipeline.digest(pipeline.new_context(), sequences={"chr1": chromosome_sequence, "chr2": "GATC"})
        assert ctx.genome.chromosomes == ["chr1"]
        assert ctx.genome.n_fragments() == 200

    def test_digest_needs_input(self, pipeline):
        """Test digesting without sequences or FASTA is rejected."""
        with pytest.raises(ConfigurationError):
            pipeline.digest(pipeline.new_context())

    def test_split_updates_counters(self, pipeline):
        """Test splitting fills the sample counters."""
        ctx = pipeline.new_context()
        records = [
            ("r1:AAA", BAIT + "CCCC" + "GATC" + "T" * 30, None),
            ("r2:CCC", "T" * 40, None),
        ]
        pipeline.split(ctx, "s1", records)
        assert ctx.counters["s1"].specific_reads == 1
        assert ctx.counters["s1"].filtered_reads == 1
        # Leading piece is shorter than min_fragment_length
        assert ctx.split_reads["s1"][0].sequences == ("GATC" + "T" * 30,)

    def test_count_requires_genome(self, pipeline):
        """Test counting before digestion raises PipelineError."""
        ctx = pipeline.new_context()
        pipeline.add_hits(ctx, "s1", [(1, "A")])
        with pytest.raises(PipelineError, match="genome"):
            pipeline.count(ctx)

    def test_count_deduplicates(self, counted, contact_tables):
        """Test counting deduplicates UMIs per sample."""
        assert list(counted.contacts) == ["ctrl_1", "ctrl_2", "treat_1", "treat_2"]
        for sid, table in contact_tables.items():
            assert counted.contacts[sid].total == int(table["count"].sum())
            assert counted.counters[sid].umi_count == counted.contacts[sid].total

    def test_align_stage(self, pipeline, chromosome_sequence, temp_dir, monkeypatch):
        """Test the align stage writes FASTQ and stores hits."""
        ctx = pipeline.new_context()
        pipeline.digest(ctx, sequences={"chr1": chromosome_sequence})
        pipeline.split(ctx, "s1", [("r1:AAA", BAIT + "GATC" + "T" * 30, None)])

        aligner = Mock()
        aligner.align.return_value = temp_dir / "s1.bam"
        hits = pd.DataFrame({"fragment_index": [3, 3], "umi": ["AAA", "CCC"]})
        monkeypatch.setattr(
            "umi4c.core.pipeline.read_fragment_hits",
            lambda *args, **kwargs: (hits, StageCounters("s1", mapped_reads=2)),
        )

        pipeline.align(ctx, "s1", aligner, work_dir=temp_dir)

        fastq = aligner.align.call_args[0][0]
        assert fastq.exists()
        assert ctx.hits["s1"] is hits
        assert ctx.counters["s1"].mapped_reads == 2
        assert ctx.counters["s1"].specific_reads == 1

    def test_align_needs_split_reads(self, pipeline, chromosome_sequence, temp_dir):
        """Test aligning a sample that was never split is rejected."""
        ctx = pipeline.digest(pipeline.new_context(), sequences={"chr1": chromosome_sequence})
        with pytest.raises(PipelineError, match="s9"):
            pipeline.align(ctx, "s9", Mock(), work_dir=temp_dir)


class TestPipelineEndToEnd:

    def test_full_analysis(self, pipeline, counted, sample_metadata):
        """Test build and analyze attach every result."""
        pipeline.build(counted, sample_metadata)
        pipeline.analyze(counted)

        exp = counted.experiment
        assert exp.group_totals == {"ctrl": 372, "treat": 1104}
        assert counted.domainogram is exp.artifact("domainogram")
        assert counted.trend is exp.artifact("trend")
        assert counted.differential is exp.artifact("differential")
        assert counted.differential.significant.iloc[0]["region_start"] == 120_000
        assert counted.errors == {}

    def test_three_conditions_skip_differential(self, pipeline, counted, sample_metadata):
        """Test three conditions keep the differential error aside."""
        metadata = sample_metadata.assign(condition=["a", "b", "c", "c"])
        pipeline.build(counted, metadata)
        pipeline.analyze(counted)

        assert counted.differential is None
        assert "differential" in counted.errors
        assert counted.domainogram is not None
        assert counted.trend is not None

    def test_qc_report(self, counted, temp_dir):
        """Test the QC report lists every sample."""
        report = counted.qc_report(temp_dir / "qc.csv")
        assert report["sample_id"].tolist() == ["ctrl_1", "ctrl_2", "treat_1", "treat_2"]
        assert (temp_dir / "qc.csv").exists()
