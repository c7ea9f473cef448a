"""
Structured exception classes for the operations simulation core
Every error carries a code, a message and details so it can be logged or returned as JSON
"""

from typing import Optional, Dict, Any


class OpsimError(Exception):
    """
    Base exception for the simulation core

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
        details: Additional error details
    """

    def __init__(
        self, code: str, message: str, details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        """String representation for logging"""
        return f"[{self.code}] {self.message}"


class InvalidArgumentError(OpsimError):
    """Malformed construction input (bad folder, zero steps). Never retried."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="invalid_argument", message=message, details=details)


class KeyNotFoundError(OpsimError, LookupError):
    """
    Lookup against a table that should have been pre-populated

    Signals a contract violation by the caller and is always propagated.

    Attributes:
        key: The key that was not found
    """

    def __init__(
        self,
        message: str,
        key: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.key = key
        super().__init__(
            code="key_not_found",
            message=message,
            details={**(details or {}), "key": repr(key)},
        )


class ConsistencyError(OpsimError):
    """
    Conflicting state observed (mismatched initial conditions or timestamps)

    Never auto-resolved: picking one of the values risks wrong results.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="consistency_error", message=message, details=details)


class InvalidStateError(OpsimError):
    """Operation requested from a build status that does not allow it"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="invalid_state", message=message, details=details)


class BuildFailure(OpsimError):
    """
    Model construction failed

    Attributes:
        problem_name: Name of the problem whose build failed
    """

    def __init__(
        self,
        problem_name: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.problem_name = problem_name
        super().__init__(
            code="build_failure",
            message=message,
            details={**(details or {}), "problem": problem_name},
        )


class SolveFailure(OpsimError):
    """
    Solver did not return a feasible point

    Attributes:
        problem_name: Name of the problem whose solve failed
    """

    def __init__(
        self,
        problem_name: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.problem_name = problem_name
        super().__init__(
            code="solve_failure",
            message=message,
            details={**(details or {}), "problem": problem_name},
        )


class WindowExhaustedError(OpsimError):
    """
    Time series read ran past the available data

    The partial window is attached so the caller can pad, truncate or abort.

    Attributes:
        values: The values that were available
        requested: Number of values requested
    """

    def __init__(
        self,
        message: str,
        values: Any = None,
        requested: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.values = values
        self.requested = requested
        available = 0 if values is None else len(values)
        super().__init__(
            code="window_exhausted",
            message=message,
            details={
                **(details or {}),
                "requested": requested,
                "available": available,
            },
        )


class DataFormatError(OpsimError):
    """Serialized data has the wrong kind, version or references a missing file"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code="data_format_error", message=message, details=details)


class SimulationFailure(OpsimError):
    """
    A simulation run stopped because a stage failed without fault tolerance

    Attributes:
        step: Step during which the failure happened
        stage: Stage number that failed
    """

    def __init__(
        self,
        message: str,
        step: int,
        stage: int,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.step = step
        self.stage = stage
        super().__init__(
            code="simulation_failure",
            message=message,
            details={**(details or {}), "step": step, "stage": stage},
        )
