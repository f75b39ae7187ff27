"""
Error taxonomy for the risk engine.

Numeric edge cases (empty series, zero variance, zero drawdown) are never
errors; they resolve to sentinel values inside the calculators.  Only bad
input and bad simulation parameters raise.
"""
from __future__ import annotations

from typing import Optional


class RiskEngineError(Exception):
    """Base class for every error raised by the engine."""


class IngestionError(RiskEngineError, ValueError):
    """
    Raised when raw trade text cannot be coerced into trade records.

    Ingestion is all-or-nothing, so this is raised for the first offending
    row and no partial trade list is ever returned.
    """

    def __init__(
        self,
        message: str,
        row: Optional[int] = None,
        column: Optional[str] = None,
    ) -> None:
        self.row = row
        self.column = column
        location = []
        if row is not None:
            location.append(f"row {row}")
        if column is not None:
            location.append(f"column '{column}'")
        prefix = f"[{', '.join(location)}] " if location else ""
        super().__init__(f"{prefix}{message}")


class SimulationConfigError(RiskEngineError, ValueError):
    """Raised before any path is generated when a simulation parameter is invalid."""

    def __init__(self, message: str, parameter: Optional[str] = None) -> None:
        self.parameter = parameter
        prefix = f"[{parameter}] " if parameter else ""
        super().__init__(f"{prefix}{message}")


class SimulationCancelledError(RiskEngineError):
    """Raised when a caller cancels a running simulation; partial paths are dropped."""
