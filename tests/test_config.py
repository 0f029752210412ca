"""
Tests for package settings and enzyme presets.
"""

import pytest

from umi4c.config import EnzymeConfig, Settings, settings
from umi4c.core.differential import DifferentialConfig
from umi4c.core.exceptions import ConfigurationError
from umi4c.core.experiment import ExperimentConfig


class TestEnzymePresets:

    def test_default_enzyme(self):
        """Test the default enzyme preset."""
        assert settings.get_enzyme() == {"name": "DpnII", "motif": "GATC", "cut_offset": 0}

    def test_named_enzyme(self):
        """Test lookup of a named preset."""
        assert settings.get_enzyme("Csp6I")["cut_offset"] == 1

    def test_unknown_enzyme(self):
        """Test an unknown enzyme is rejected."""
        with pytest.raises(ConfigurationError, match="Unsupported enzyme"):
            settings.get_enzyme("BamHI-HF")

    def test_offsets_within_motif(self):
        """Test every preset cuts within or right after its motif."""
        for name, preset in EnzymeConfig.SUPPORTED_ENZYMES.items():
            assert 0 <= preset["cut_offset"] <= len(preset["motif"]), name


class TestSettings:

    def test_defaults(self):
        """Test default settings."""
        s = Settings()
        assert s.bait_exclusion == 3_000
        assert s.bait_expansion == 1_000_000
        assert s.differential_alpha == 0.05

    def test_environment_override(self, monkeypatch):
        """Test settings read from UMI4C_ environment variables."""
        monkeypatch.setenv("UMI4C_THREADS", "16")
        monkeypatch.setenv("UMI4C_DEFAULT_ENZYME", "NlaIII")
        s = Settings()
        assert s.threads == 16
        assert s.get_enzyme()["motif"] == "CATG"

    def test_stage_configs_from_settings(self):
        """Test stage configs built from settings."""
        assert ExperimentConfig.from_settings().bait_exclusion == settings.bait_exclusion
        assert DifferentialConfig.from_settings().min_counts == settings.differential_min_counts
