"""
Unit tests for genomic_utils shared module.

Tests cover:
- Region model
- Interval overlap detection (NCLS) and midpoint assignment
- Region tables and chromosome utilities
"""

import pandas as pd
import pytest

from umi4c.core.exceptions import DataIntegrityError, InvalidParameterError, MissingColumnError
from umi4c.core.genomic_utils import (
    Region,
    assign_by_midpoint,
    detect_column,
    find_overlaps,
    regions_from_dataframe,
    regions_to_dataframe,
    sort_chromosomes,
    tile_region,
    CHROM_COLS,
)


# ============================================================================
# Region model
# ============================================================================


class TestRegion:

    def test_width_and_midpoint(self):
        """Test region width and midpoint."""
        r = Region("chr1", 100, 301)
        assert r.width == 201
        assert r.midpoint == 200

    def test_invalid_coordinates(self):
        """Test end before start is rejected."""
        with pytest.raises(DataIntegrityError):
            Region("chr1", 500, 100)
        with pytest.raises(DataIntegrityError):
            Region("chr1", -5, 100)

    def test_parse(self):
        """Test parsing a chr:start-end string with commas."""
        r = Region.parse("chr7:1,000-2,500", name="bait")
        assert (r.chrom, r.start, r.end, r.name) == ("chr7", 1000, 2500, "bait")
        assert str(r) == "chr7:1000-2500"

    def test_parse_invalid(self):
        """Test a malformed region string is rejected."""
        with pytest.raises(InvalidParameterError):
            Region.parse("chr7-1000")

    def test_distance(self):
        """Test distance between regions."""
        a = Region("chr1", 100, 200)
        assert a.distance_to(Region("chr1", 150, 400)) == 0
        assert a.distance_to(Region("chr1", 250, 400)) == 50
        assert a.distance_to(Region("chr1", 0, 40)) == 60
        assert a.distance_to(Region("chr2", 100, 200)) == float("inf")

    def test_expand_clips_at_zero(self):
        """Test expansion stops at position 0."""
        r = Region("chr1", 100, 200).expand(150)
        assert (r.start, r.end) == (0, 350)

    def test_resize_centred(self):
        """Test resizing keeps the midpoint and name."""
        r = Region("chr1", 1000, 1100, name="q").resize(500)
        assert (r.start, r.end) == (800, 1300)
        assert r.name == "q"

    def test_resize_invalid(self):
        """Test a non-positive width is rejected."""
        with pytest.raises(InvalidParameterError):
            Region("chr1", 0, 10).resize(0)

    def test_overlaps_and_contains(self):
        """Test overlap and containment checks."""
        outer = Region("chr1", 0, 1000)
        assert outer.contains(Region("chr1", 10, 20))
        assert outer.overlaps(Region("chr1", 999, 2000))
        assert not outer.overlaps(Region("chr1", 1000, 2000))
        assert not outer.overlaps(Region("chr2", 0, 10))


class TestTileRegion:

    def test_contiguous_tiles(self):
        """Test tiles are contiguous with a short last tile."""
        tiles = tile_region(Region("chr1", 1000, 11_500), 5000)
        assert [(t.start, t.end) for t in tiles] == [(1000, 6000), (6000, 11_000), (11_000, 11_500)]

    def test_invalid_window(self):
        """Test a zero tile width is rejected."""
        with pytest.raises(InvalidParameterError):
            tile_region(Region("chr1", 0, 100), 0)


# ============================================================================
# Core overlap detection
# ============================================================================


class TestFindOverlaps:
    """Tests for the main find_overlaps function."""

    def test_basic_overlap(self):
        """Two intervals on the same chromosome that overlap."""
        query = pd.DataFrame({"chr": ["chr1"], "start": [100], "end": [300]})
        subject = pd.DataFrame({"chr": ["chr1"], "start": [200], "end": [400]})
        result = find_overlaps(query, subject)
        assert len(result) == 1
        assert result.iloc[0]["overlap_bp"] == 100

    def test_no_overlap(self):
        """Test non-overlapping intervals."""
        query = pd.DataFrame({"chr": ["chr1"], "start": [100], "end": [200]})
        subject = pd.DataFrame({"chr": ["chr1"], "start": [300], "end": [400]})
        assert len(find_overlaps(query, subject)) == 0

    def test_different_chromosomes(self):
        """Intervals on different chromosomes never overlap."""
        query = pd.DataFrame({"chr": ["chr1"], "start": [100], "end": [300]})
        subject = pd.DataFrame({"chr": ["chr2"], "start": [100], "end": [300]})
        assert len(find_overlaps(query, subject)) == 0

    def test_min_overlap_bp_filter(self):
        """Test the minimum overlap filter."""
        query = pd.DataFrame({"chr": ["chr1"], "start": [100], "end": [300]})
        subject = pd.DataFrame({"chr": ["chr1"], "start": [290], "end": [400]})
        assert len(find_overlaps(query, subject, min_overlap_bp=1)) == 1
        assert len(find_overlaps(query, subject, min_overlap_bp=50)) == 0

    def test_results_ordered(self):
        """Test overlaps are ordered by query then subject."""
        query = pd.DataFrame({"chr": ["chr1", "chr1"], "start": [500, 100], "end": [700, 300]})
        subject = pd.DataFrame({"chr": ["chr1", "chr1"], "start": [600, 200], "end": [800, 650]})
        result = find_overlaps(query, subject)
        assert list(zip(result["query_idx"], result["subject_idx"])) == [(0, 0), (0, 1), (1, 1)]

    def test_empty_inputs(self):
        """Test empty query gives no overlaps."""
        query = pd.DataFrame(columns=["chr", "start", "end"])
        subject = pd.DataFrame({"chr": ["chr1"], "start": [100], "end": [200]})
        assert len(find_overlaps(query, subject)) == 0
        assert len(find_overlaps(subject, query)) == 0


class TestAssignByMidpoint:

    def test_fragment_assigned_by_midpoint_only(self):
        """Test fragments are assigned by midpoint, not by overlap."""
        regions = pd.DataFrame({"chr": ["chr1"], "start": [1000], "end": [2000]})
        fragments = pd.DataFrame({
            "chr": ["chr1", "chr1", "chr1"],
            "start": [500, 1200, 1800],
            "end": [1100, 1800, 2600],   # midpoints 800, 1500, 2200
        })
        hits = assign_by_midpoint(regions, fragments)
        assert hits["subject_idx"].tolist() == [1]

    def test_half_open_end(self):
        """Test a midpoint on the region end is outside."""
        regions = pd.DataFrame({"chr": ["chr1"], "start": [0], "end": [1000]})
        fragments = pd.DataFrame({"chr": ["chr1"], "start": [900], "end": [1100]})  # midpoint 1000
        assert len(assign_by_midpoint(regions, fragments)) == 0


# ============================================================================
# Region tables
# ============================================================================


class TestRegionTables:

    def test_from_bed_like_columns(self):
        """Test regions from BED-style column names."""
        df = pd.DataFrame({"chrom": ["chr1"], "chromStart": [10], "chromEnd": [20], "name": ["enh"]})
        regions = regions_from_dataframe(df)
        assert regions == [Region("chr1", 10, 20, "enh")]

    def test_to_dataframe_names_default_to_coordinates(self):
        """Test unnamed regions are named by coordinates."""
        df = regions_to_dataframe([Region("chr1", 10, 20)])
        assert df.loc[0, "name"] == "chr1:10-20"

    def test_missing_columns(self):
        """Test a table without an end column is rejected."""
        with pytest.raises(MissingColumnError):
            regions_from_dataframe(pd.DataFrame({"chr": ["chr1"], "start": [1]}))


class TestDetectColumn:

    def test_finds_standard_name(self):
        """Test detection of a standard column name."""
        df = pd.DataFrame({"chromosome": ["chr1"]})
        assert detect_column(df, CHROM_COLS) == "chromosome"

    def test_case_insensitive(self):
        """Test detection ignores case."""
        df = pd.DataFrame({"CHROM": ["chr1"]})
        assert detect_column(df, CHROM_COLS) == "CHROM"

    def test_returns_none_when_missing(self):
        """Test None when no candidate is present."""
        assert detect_column(pd.DataFrame({"x": [1]}), CHROM_COLS) is None

    def test_required_raises(self):
        """Test a required missing column raises MissingColumnError."""
        with pytest.raises(MissingColumnError):
            detect_column(pd.DataFrame({"x": [1]}), CHROM_COLS, required=True)


class TestSortChromosomes:

    def test_natural_order(self):
        """Test chromosomes sort numerically, then X, Y, M."""
        chroms = ["chr10", "chr2", "chrX", "chr1", "chrM"]
        assert sort_chromosomes(chroms) == ["chr1", "chr2", "chr10", "chrX", "chrM"]

    def test_unknown_chromosomes(self):
        """Test unrecognised names sort last."""
        result = sort_chromosomes(["chr1", "scaffold_9", "chr2"])
        assert result[:2] == ["chr1", "chr2"]
        assert result[-1] == "scaffold_9"
