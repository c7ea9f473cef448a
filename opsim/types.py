"""
Type definitions for the operations simulation core
Provides TypedDict hints for structured data returned by caches, stores and problems
"""

from typing import TypedDict, List, Dict, Any, Optional


class CacheStatsDict(TypedDict):
    """
    Typed dictionary for cache statistics
    """
    hits: int
    misses: int
    hit_rate: float
    size: int


class ResultStoreStatsDict(TypedDict):
    """
    Typed dictionary for result store statistics

    Sizes are in bytes.
    """
    cached_bytes: int
    pending_bytes: int
    kept_bytes: int
    max_size: int
    min_flush_size: int
    entries: int
    flushes: int
    evictions: int
    hits: int
    misses: int
    hit_rate: float


class OptimizerStatsDict(TypedDict, total=False):
    """
    Typed dictionary for per-solve optimizer statistics
    """
    step: int
    execution: int
    status: str
    objective_value: Optional[float]
    solve_time: float
    build_time: float


class StepOutcomeDict(TypedDict):
    """
    Outcome of one problem execution inside a simulation step
    """
    step: int
    stage: int
    problem: str
    execution: int
    start_time: str
    status: str
    error: Optional[str]


class ReferenceSnapshotDict(TypedDict):
    """
    Serializable view of a simulation reference
    """
    run_count: Dict[int, Dict[int, int]]
    date_ref: Dict[int, str]
    current_time: str
    reset: bool
    raw_dir: str
    models_dir: str
    results_dir: str


class ContainerSummaryDict(TypedDict):
    """
    JSON summary of an optimization container written next to the serialized problem
    """
    initial_time: Optional[str]
    time_steps: List[int]
    variables: Dict[str, List[Any]]
    constraints: List[str]
    parameters: List[str]
    aux_variables: List[str]
    duals: List[str]
