"""
Enumerations shared by the cache, problem and simulation layers
"""

from enum import Enum, IntEnum


class CachePriority(IntEnum):
    """Priority for keeping result data in memory to serve reads"""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class BuildStatus(str, Enum):
    """Build state of an optimization problem"""

    EMPTY = "empty"
    IN_PROGRESS = "in_progress"
    BUILT = "built"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Outcome of the last solve of an optimization problem"""

    READY = "ready"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"


class SolverStatus(str, Enum):
    """Status reported by a solver collaborator"""

    FEASIBLE = "feasible"
    INFEASIBLE = "infeasible"
    ERROR = "error"


class TimeSeriesType(str, Enum):
    """
    Kind of time series attached to a component

    STATIC series are one continuous array; DETERMINISTIC and PROBABILISTIC
    series are stored as one forecast window per initial time.
    """

    STATIC = "static"
    DETERMINISTIC = "deterministic"
    PROBABILISTIC = "probabilistic"


class ChronologyType(str, Enum):
    """How a stage computes the end of its interval within a step"""

    FEED_FORWARD = "feed_forward"
    RECEDING_HORIZON = "receding_horizon"
