"""
Custom exception classes for umi4c.

Provides clear, stage-specific error types so that a failing step reports
the offending sample, chromosome or region without halting unrelated work.
"""


class UMI4CError(Exception):
    """Base exception for all umi4c errors."""

    # Set by BatchProcessor when raised from a batch: every failure by task key
    batch_failures = None


# ============================================================================
# Configuration errors
# ============================================================================

class ConfigurationError(UMI4CError):
    """Raised when user-supplied parameters or metadata are inconsistent."""
    pass


class MissingColumnError(ConfigurationError):
    """Raised when a required column is missing from a DataFrame."""

    def __init__(self, column: str, dataframe_name: str = "DataFrame", available: list = None):
        available_str = f" Available columns: {available}" if available else ""
        super().__init__(
            f"Required column '{column}' not found in {dataframe_name}.{available_str}"
        )
        self.column = column
        self.available = available


class InvalidParameterError(ConfigurationError):
    """Raised when a parameter value is out of valid range."""

    def __init__(self, param: str, value, valid_range: str = ""):
        msg = f"Invalid value for '{param}': {value}"
        if valid_range:
            msg += f". Expected: {valid_range}"
        super().__init__(msg)
        self.param = param
        self.value = value


# ============================================================================
# Data errors
# ============================================================================

class DataIntegrityError(UMI4CError):
    """Raised when input data violates a structural invariant.

    Examples: fragment coordinates outside the chromosome, negative or
    non-integer counts, duplicated sample identifiers.
    """
    pass


class EmptyResultError(UMI4CError):
    """Raised when a filtering step leaves nothing to work with."""

    def __init__(self, data_name: str = "data", reason: str = ""):
        msg = f"No {data_name} left"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.data_name = data_name


# ============================================================================
# Pipeline errors
# ============================================================================

class PipelineError(UMI4CError):
    """Base class for errors raised by external pipeline steps."""
    pass


class AlignmentError(PipelineError):
    """Raised when the external aligner exits with a non-zero status."""

    def __init__(self, sample_id: str, returncode: int, stderr: str = ""):
        msg = f"Alignment failed for sample '{sample_id}' (exit status {returncode})"
        if stderr:
            msg += f": {stderr.strip()[-500:]}"
        super().__init__(msg)
        self.sample_id = sample_id
        self.returncode = returncode


# ============================================================================
# Validation helpers
# ============================================================================

def validate_dataframe(
    df,
    name: str = "DataFrame",
    required_columns: list = None,
    min_rows: int = 0,
) -> None:
    """Validate a DataFrame has expected shape and columns.

    Parameters
    ----------
    df : pd.DataFrame
        The DataFrame to validate.
    name : str
        Human-readable name for error messages.
    required_columns : list, optional
        Columns that must be present.
    min_rows : int
        Minimum number of rows required.

    Raises
    ------
    EmptyResultError
        If df is None or empty and min_rows > 0.
    MissingColumnError
        If a required column is missing.
    """
    import pandas as pd

    if df is None:
        raise EmptyResultError(name)

    if not isinstance(df, pd.DataFrame):
        raise DataIntegrityError(f"Expected DataFrame for {name}, got {type(df).__name__}")

    if required_columns:
        for col in required_columns:
            if col not in df.columns:
                raise MissingColumnError(col, name, available=list(df.columns))

    if min_rows > 0 and len(df) < min_rows:
        if len(df) == 0:
            raise EmptyResultError(name)
        raise DataIntegrityError(
            f"{name} has {len(df)} rows but at least {min_rows} are required"
        )


def validate_numeric_param(value, name: str, min_val=None, max_val=None) -> None:
    """Validate a numeric parameter is within acceptable bounds.

    Raises
    ------
    InvalidParameterError
        If the value is out of range.
    """
    if min_val is not None and value < min_val:
        raise InvalidParameterError(name, value, f">= {min_val}")
    if max_val is not None and value > max_val:
        raise InvalidParameterError(name, value, f"<= {max_val}")


def validate_counts(values, name: str) -> None:
    """Check that counts are finite, non-negative integers.

    Raises
    ------
    DataIntegrityError
        Naming ``name`` when any value is negative or fractional.
    """
    import numpy as np

    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        return
    if not np.all(np.isfinite(arr)):
        raise DataIntegrityError(f"Non-finite counts found in {name}")
    if (arr < 0).any():
        raise DataIntegrityError(f"Negative counts found in {name}")
    if not np.all(arr == np.round(arr)):
        raise DataIntegrityError(f"Non-integer counts found in {name}")
