"""
Pydantic models for the operations simulation core
Defines problem settings, problem templates and the HTTP request/response payloads
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator

from opsim.constants import TIME_SERIES_CACHE_SIZE_BYTES, UNSET_HORIZON
from opsim.enums import ChronologyType
from opsim.system import System

logger = logging.getLogger(__name__)


class ProblemSettings(BaseModel):
    """
    Settings a problem is built with; they survive resets

    Attributes:
        horizon: Periods per build (0 takes the system forecast horizon)
        resolution: Period length (None takes the system resolution)
        initial_time: First period of the next build
        optimizer: Name of the solver backend
        constraint_duals: Constraint keys whose duals are read after a solve
        system_to_file: Write the system next to the serialized problem
        allow_fails: Record build/solve failures instead of raising
        optimizer_log_print: Let the solver print its log
        time_series_cache_size: Bytes cached per series; 0 disables the cache
        use_parameters: Build time series as updatable parameters
    """

    model_config = ConfigDict(validate_assignment=True)

    horizon: int = Field(UNSET_HORIZON, ge=0)
    resolution: Optional[timedelta] = None
    initial_time: Optional[datetime] = None
    optimizer: Optional[str] = "highs"
    constraint_duals: List[str] = []
    system_to_file: bool = True
    allow_fails: bool = False
    optimizer_log_print: bool = False
    time_series_cache_size: int = Field(TIME_SERIES_CACHE_SIZE_BYTES, ge=0)
    use_parameters: bool = False

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v: Optional[timedelta]) -> Optional[timedelta]:
        if v is not None and v <= timedelta(0):
            raise ValueError("resolution must be a positive duration")
        return v

    @property
    def use_time_series_cache(self) -> bool:
        return self.time_series_cache_size > 0

    def log_values(self) -> None:
        """Log every setting at debug level"""
        for name, value in self.model_dump().items():
            logger.debug(f"Setting {name} = {value}")


class ProblemTemplate(BaseModel):
    """
    What to build: a network model plus one formulation per device type

    Attributes:
        transmission: Network formulation name
        devices: Device type name -> formulation name
        services: Reserve products to include
    """

    transmission: str = "CopperPlatePowerModel"
    devices: Dict[str, str] = {"ThermalGenerator": "ThermalDispatch", "PowerLoad": "StaticLoad"}
    services: List[str] = []


# ============================================================================
# HTTP payloads
# ============================================================================


class StageRequest(BaseModel):
    """
    One stage of a simulation request

    Attributes:
        name: Problem name
        template: Problem template
        horizon: Periods per build
        resolution_minutes: Period length
        executions: Solves per simulation step
        chronology: How the stage computes its end of interval
        allow_fails: Continue the simulation when this stage fails
        constraint_duals: Duals to record
        keep_in_cache: Container keys whose results stay in memory after a flush
    """

    name: str
    template: ProblemTemplate = ProblemTemplate()
    horizon: int = Field(24, ge=1)
    resolution_minutes: int = Field(60, gt=0)
    executions: int = Field(1, ge=1)
    chronology: ChronologyType = ChronologyType.RECEDING_HORIZON
    allow_fails: bool = False
    constraint_duals: List[str] = []
    keep_in_cache: List[str] = []


class SimulationRequest(BaseModel):
    """
    Complete simulation request payload

    Attributes:
        name: Simulation base name (workspace folder name)
        system: Power system with attached time series
        steps: Number of simulation steps
        initial_time: Initial time of the first step
        interval_hours: Length of one step
        stages: Stages in execution order
    """

    name: str = "simulation"
    system: System
    steps: int = Field(1, ge=1)
    initial_time: datetime
    interval_hours: float = Field(24.0, gt=0)
    stages: List[StageRequest] = Field(..., min_length=1)


class SimulationResponse(BaseModel):
    """
    Result of running a simulation

    Attributes:
        id: Identifier for follow-up reads
        success: Whether every step completed
        status: Final simulation status
        run_count: step -> stage -> executions
        date_ref: step -> initial timestamp
        outcomes: One entry per problem execution
        cache_stats: problem name -> time series cache statistics
        error: Error message when the run stopped
    """

    id: str
    success: bool
    status: str
    run_count: Dict[int, Dict[int, int]] = {}
    date_ref: Dict[int, str] = {}
    outcomes: List[Dict[str, Any]] = []
    cache_stats: Dict[str, Dict[str, Any]] = {}
    error: Optional[str] = None


class ResultResponse(BaseModel):
    """
    Stored result series for one key and timestamp
    """

    problem: str
    category: str
    key: str
    timestamp: datetime
    data: List[Any]
