"""
Exception hierarchy.

Only configuration problems are raised to callers.  The other types are used
inside the processing path and are always absorbed before they reach the
per-sample API.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PPGVitalsError(Exception):
    """Base exception for all ppg_vitals errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a plain dictionary (for logs / CLI output)."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(PPGVitalsError):
    """Invalid configuration value or calibration, rejected at the update boundary."""

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={"field": field, **(details or {})},
        )
        self.field = field


class OracleError(PPGVitalsError):
    """The optional peak-confidence oracle failed or returned garbage."""

    def __init__(
        self,
        message: str,
        oracle: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code="ORACLE_ERROR",
            details={"oracle": oracle, **(details or {})},
        )
        self.oracle = oracle


class InsufficientDataError(PPGVitalsError):
    """A component has fewer samples than it needs to produce a value."""

    def __init__(self, message: str, required: int = 0, available: int = 0) -> None:
        super().__init__(
            message=message,
            code="INSUFFICIENT_DATA",
            details={"required": required, "available": available},
        )
        self.required = required
        self.available = available
