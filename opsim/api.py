"""
FastAPI application and endpoints for the operations simulation core
Runs multi-stage simulations on request and serves their stored results
"""

# Standard library imports
import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

# Third-party imports
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local application imports
from opsim.chronology import make_chronology
from opsim.config import get_settings
from opsim.constants import STORE_CONTAINERS
from opsim.exceptions import (
    ConsistencyError,
    DataFormatError,
    InvalidArgumentError,
    InvalidStateError,
    KeyNotFoundError,
    OpsimError,
    SimulationFailure,
)
from opsim.models import ResultResponse, SimulationRequest, SimulationResponse
from opsim.problem import DecisionProblem
from opsim.simulation import Simulation, Stage
from opsim.utils.logging_config import get_logger, set_request_id, setup_logging
from opsim.utils.run_registry import SimulationRun, get_run_registry

logger = get_logger(__name__)

# Get configuration
settings = get_settings()

# Setup logging
setup_logging(
    level=settings.log_level,
    json_format=settings.log_format_json,
    log_file=settings.log_file,
    max_bytes=settings.log_max_bytes,
    backup_count=settings.log_backup_count,
)

# Create FastAPI app
app = FastAPI(
    title="Operations Simulation API",
    version="1.0.0",
    description="Multi-stage production cost simulations over rolling decision problems",
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

MAX_REQUEST_SIZE = settings.max_request_size
SIMULATION_TIMEOUT = settings.simulation_timeout

# Error class -> HTTP status; anything else is a 500
ERROR_STATUS = {
    InvalidArgumentError: status.HTTP_400_BAD_REQUEST,
    DataFormatError: status.HTTP_400_BAD_REQUEST,
    KeyNotFoundError: status.HTTP_404_NOT_FOUND,
    ConsistencyError: status.HTTP_409_CONFLICT,
    InvalidStateError: status.HTTP_409_CONFLICT,
}


def check_request_size(request: Request) -> None:
    """Check if request size exceeds limit"""
    content_length = request.headers.get("content-length")
    if content_length:
        size = int(content_length)
        if size > MAX_REQUEST_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Request size ({size} bytes) exceeds maximum ({MAX_REQUEST_SIZE} bytes)",
            )


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Middleware to add request ID to all requests"""
    request_id = request.headers.get("X-Request-ID")
    if not request_id:
        request_id = set_request_id()
    else:
        set_request_id(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def request_size_middleware(request: Request, call_next):
    """Middleware to check request size"""
    try:
        check_request_size(request)
    except HTTPException as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": f"http_{exc.status_code}", "message": exc.detail, "details": {}},
        )
    return await call_next(request)


def add_debug_info(error_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the traceback to the error details when DEBUG mode is enabled"""
    if settings.debug and "traceback" not in error_dict.get("details", {}):
        import traceback
        error_dict.setdefault("details", {})["traceback"] = traceback.format_exc()
    return error_dict


def error_status(exc: OpsimError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(OpsimError)
async def opsim_error_handler(request: Request, exc: OpsimError):
    """Handle core errors with structured format"""
    status_code = error_status(exc)
    if status_code >= 500:
        logger.error(f"Simulation error: {exc.message}", extra={"code": exc.code})
    else:
        logger.warning(f"Request error: {exc.message}", extra={"code": exc.code})
    return JSONResponse(status_code=status_code, content=add_debug_info(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors with structured format"""
    logger.warning(f"Validation error: {exc.errors()}")

    error_messages = []
    for error in exc.errors():
        loc = " -> ".join(str(x) for x in error.get("loc", []))
        msg = error.get("msg", "Validation error")
        error_messages.append(f"{loc}: {msg}")

    error_response: Dict[str, Any] = {
        "code": "validation_error",
        "message": "; ".join(error_messages),
        "details": {"errors": [{"loc": e.get("loc"), "msg": e.get("msg")} for e in exc.errors()]},
    }
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=add_debug_info(error_response),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with structured format"""
    logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")
    error_response: Dict[str, Any] = {
        "code": f"http_{exc.status_code}",
        "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        "details": {"status_code": exc.status_code},
    }
    return JSONResponse(status_code=exc.status_code, content=add_debug_info(error_response))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions with structured format"""
    logger.exception("Unhandled exception", exc_info=exc)
    error_response: Dict[str, Any] = {
        "code": "internal_error",
        "message": str(exc) if settings.debug else "An internal error occurred",
        "details": {"exception_type": type(exc).__name__},
    }
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=add_debug_info(error_response),
    )


# ============================================================================
# Simulation assembly
# ============================================================================


def make_simulation(request: SimulationRequest, folder: Path) -> Simulation:
    """Translate a request into stages of decision problems"""
    stages = []
    for stage_request in request.stages:
        problem = DecisionProblem(
            stage_request.template,
            request.system,
            name=stage_request.name,
            horizon=stage_request.horizon,
            resolution=timedelta(minutes=stage_request.resolution_minutes),
            initial_time=request.initial_time,
            allow_fails=stage_request.allow_fails,
            constraint_duals=stage_request.constraint_duals,
            time_series_cache_size=settings.time_series_cache_size,
        )
        stages.append(
            Stage(
                problem,
                executions=stage_request.executions,
                chronology=make_chronology(stage_request.chronology),
                keep_in_cache=stage_request.keep_in_cache,
            )
        )
    return Simulation(
        request.name,
        request.steps,
        stages,
        folder,
        request.initial_time,
        timedelta(hours=request.interval_hours),
    )


def run_simulation(simulation: Simulation, run_id: str) -> SimulationResponse:
    """Build and execute; a stopped run is reported, not raised"""
    reference = simulation.build()
    error = None
    try:
        simulation.execute()
    except SimulationFailure as e:
        error = e.message

    snapshot = reference.to_dict()
    return SimulationResponse(
        id=run_id,
        success=error is None,
        status=simulation.status.value,
        run_count=snapshot["run_count"],
        date_ref=snapshot["date_ref"],
        outcomes=[dict(outcome) for outcome in simulation.outcomes],
        cache_stats={name: dict(stats) for name, stats in simulation.get_cache_stats().items()},
        error=error,
    )


def get_run_or_404(run_id: str) -> SimulationRun:
    run = get_run_registry().get(run_id)
    if run is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Simulation {run_id} not found or expired",
        )
    return run


# ============================================================================
# Endpoints
# ============================================================================


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    logger.info("Root endpoint accessed")
    return {
        "message": "Operations Simulation API",
        "version": "1.0.0",
        "endpoints": {
            "simulations": "/simulations",
            "simulation": "/simulations/{id}",
            "results": "/simulations/{id}/results/{problem}/{category}/{key}",
            "health": "/health",
            "cache_stats": "/cache/stats",
        },
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    logger.debug("Health check requested")
    return {"status": "healthy"}


@app.get("/cache/stats")
def cache_stats():
    """Time series cache and result store statistics of every registered run"""
    logger.debug("Cache stats requested")
    registry = get_run_registry()
    stats = registry.get_stats()
    for entry in stats["runs"]:
        run = registry.get(entry["id"])
        if run is None:
            continue
        entry["time_series"] = run.simulation.get_cache_stats()
        if run.simulation.store is not None:
            entry["result_store"] = run.simulation.store.get_stats()
    return stats


@app.post("/simulations", response_model=SimulationResponse)
async def create_simulation(request: SimulationRequest):
    """
    Run a multi-stage simulation

    Returns the reference counters, one outcome per execution and cache statistics.
    The run stays available for result reads under the returned id.
    """
    logger.info(
        f"Simulation request received: name={request.name}, steps={request.steps}, "
        f"stages={[s.name for s in request.stages]}"
    )
    if request.steps > settings.max_steps:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"steps ({request.steps}) exceeds maximum ({settings.max_steps})",
        )

    folder = Path(settings.simulation_folder)
    folder.mkdir(parents=True, exist_ok=True)
    simulation = make_simulation(request, folder)
    run = SimulationRun(simulation, ttl_hours=settings.simulation_ttl_hours)

    try:
        response = await asyncio.wait_for(
            asyncio.to_thread(run_simulation, simulation, run.id),
            timeout=SIMULATION_TIMEOUT,
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            detail=(
                f"Simulation exceeded timeout of {SIMULATION_TIMEOUT} seconds. "
                f"Consider reducing steps or horizons."
            ),
        )

    run.summary = response.model_dump(mode="json")
    get_run_registry().store(run)
    logger.info(f"Simulation {run.id} finished: status={response.status}")
    return response


@app.get("/simulations/{run_id}", response_model=SimulationResponse)
def get_simulation(run_id: str):
    """Summary of a finished simulation"""
    return get_run_or_404(run_id).summary


@app.get("/simulations/{run_id}/results/{problem}/{category}/{key}", response_model=ResultResponse)
def get_result(
    run_id: str,
    problem: str,
    category: str,
    key: str,
    timestamp: Optional[datetime] = Query(None, description="Defaults to the latest result"),
):
    """Stored values of one result key; the latest timestamp when none is given"""
    if category not in STORE_CONTAINERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown category {category}. Valid: {sorted(STORE_CONTAINERS)}",
        )
    run = get_run_or_404(run_id)
    store = run.simulation.store
    if store is None:
        raise InvalidStateError(f"Simulation {run_id} has no result store")

    if timestamp is None:
        timestamps = store.list_timestamps(problem, category, key)
        if not timestamps:
            raise KeyNotFoundError(f"No results for {problem}/{category}/{key}", key=key)
        timestamp = timestamps[-1]

    data = store.read(problem, category, key, timestamp)
    return ResultResponse(
        problem=problem,
        category=category,
        key=key,
        timestamp=timestamp,
        data=data.tolist(),
    )
