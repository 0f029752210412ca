"""
Configuration settings for umi4c.

Supports named restriction-enzyme presets, configurable tool paths
and analysis defaults overridable from the environment (``UMI4C_*``).
"""

import logging
from pathlib import Path
from typing import Dict, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class EnzymeConfig:
    """Restriction enzyme presets.

    ``cut_offset`` is the zero-based position of the cut inside the motif
    on the forward strand (``^GATC`` -> 0, ``CATG^`` -> 4).
    """

    SUPPORTED_ENZYMES = {
        "DpnII": {"motif": "GATC", "cut_offset": 0},
        "MboI": {"motif": "GATC", "cut_offset": 0},
        "Sau3AI": {"motif": "GATC", "cut_offset": 0},
        "Csp6I": {"motif": "GTAC", "cut_offset": 1},
        "NlaIII": {"motif": "CATG", "cut_offset": 4},
        "MseI": {"motif": "TTAA", "cut_offset": 1},
        "HindIII": {"motif": "AAGCTT", "cut_offset": 1},
        "EcoRI": {"motif": "GAATTC", "cut_offset": 1},
    }


class Settings(BaseSettings):
    """Package settings loaded from environment variables."""

    # Application
    app_name: str = "umi4c"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # Paths
    results_dir: Path = Field(default_factory=lambda: Path.cwd() / "results")

    # External tools
    bowtie2_path: str = "bowtie2"
    samtools_path: str = "samtools"

    # Resources
    threads: int = 4
    max_workers: int = 4

    # Default analysis parameters
    default_enzyme: str = "DpnII"
    max_contact_distance: int = 10_000_000
    bait_exclusion: int = 3_000
    bait_expansion: int = 1_000_000
    grouping: str = "condition"
    min_fragment_length: int = 20
    domainogram_max_scale: int = 150
    trend_min_support: int = 50
    trend_sd: float = 2.0
    differential_window_size: int = 5_000
    differential_min_counts: int = 30
    differential_alpha: float = 0.05

    class Config:
        env_prefix = "UMI4C_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def ensure_directories(self):
        """Create the results directory if it doesn't exist."""
        self.results_dir.mkdir(parents=True, exist_ok=True)

    def get_enzyme(self, name: Optional[str] = None) -> Dict:
        """Get motif and cut offset for a named enzyme (default enzyme if omitted)."""
        from .core.exceptions import ConfigurationError

        name = name or self.default_enzyme
        if name not in EnzymeConfig.SUPPORTED_ENZYMES:
            raise ConfigurationError(
                f"Unsupported enzyme: {name}. Supported: {list(EnzymeConfig.SUPPORTED_ENZYMES.keys())}"
            )
        return {"name": name, **EnzymeConfig.SUPPORTED_ENZYMES[name]}


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and notebooks."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


# Global settings instance
settings = Settings()
