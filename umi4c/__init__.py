"""
umi4c - UMI-4C chromatin contact analysis

Turns UMI-tagged 4C reads into viewpoint-anchored contact profiles and
tests for contact differences between two conditions.
"""

__version__ = "0.1.0"
__author__ = "umi4c developers"
