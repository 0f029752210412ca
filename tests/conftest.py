"""
Shared test fixtures for the umi4c test suite.
"""

import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from umi4c.core.digestion import DigestedGenome
from umi4c.core.experiment import ContactMatrixBuilder, ExperimentConfig
from umi4c.core.genomic_utils import Region

FRAGMENT_WIDTH = 1_000
CHROM_LENGTH = 200_000
HOTSPOT = (120_000, 125_000)


def make_contact_table(count_fn, chrom="chr1", start=0, end=CHROM_LENGTH, width=FRAGMENT_WIDTH):
    """Contact table with one row per fragment of ``width`` and count ``count_fn(start)``."""
    starts = np.arange(start, end, width)
    counts = [count_fn(int(s)) for s in starts]
    df = pd.DataFrame({
        "chromosome": chrom,
        "start": starts,
        "end": starts + width,
        "count": counts,
    })
    return df[df["count"] > 0].reset_index(drop=True)


# ============================================================================
# Genome
# ============================================================================


@pytest.fixture
def chromosome_sequence():
    """200 kb chromosome with a GATC site every 1 kb."""
    return ("GATC" + "A" * (FRAGMENT_WIDTH - 4)) * (CHROM_LENGTH // FRAGMENT_WIDTH)


@pytest.fixture
def digested_genome():
    """chr1 cut into 200 fragments of 1 kb."""
    starts = np.arange(0, CHROM_LENGTH, FRAGMENT_WIDTH)
    return DigestedGenome.from_dataframe(pd.DataFrame({
        "chromosome": "chr1",
        "start": starts,
        "end": starts + FRAGMENT_WIDTH,
        "fragment_index": np.arange(len(starts)),
    }))


@pytest.fixture
def viewpoint():
    return Region("chr1", 100_000, 100_500, name="bait")


# ============================================================================
# Experiment inputs
# ============================================================================


@pytest.fixture
def sample_metadata():
    """Two conditions with two replicates each."""
    ids = ["ctrl_1", "ctrl_2", "treat_1", "treat_2"]
    return pd.DataFrame({
        "sampleID": ids,
        "replicate": [1, 2, 1, 2],
        "condition": ["ctrl", "ctrl", "treat", "treat"],
        "file": [f"{s}.tsv" for s in ids],
    })


@pytest.fixture
def contact_tables():
    """Control: 2 UMIs per fragment. Treatment: 4 per fragment, 40 in the hotspot."""
    def ctrl(_start):
        return 2

    def treat(start):
        return 40 if HOTSPOT[0] <= start < HOTSPOT[1] else 4

    return {
        "ctrl_1": make_contact_table(ctrl),
        "ctrl_2": make_contact_table(ctrl),
        "treat_1": make_contact_table(treat),
        "treat_2": make_contact_table(treat),
    }


@pytest.fixture
def experiment_config():
    return ExperimentConfig(bait_exclusion=3_000, bait_expansion=50_000)


@pytest.fixture
def experiment(viewpoint, experiment_config, contact_tables, sample_metadata):
    return ContactMatrixBuilder(viewpoint, experiment_config).build(contact_tables, sample_metadata)


# ============================================================================
# Temporary files
# ============================================================================


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that gets cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
