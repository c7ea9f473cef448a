"""
Registry of finished simulation runs
Keeps recent runs in memory so the API can serve their results after the request that ran them
"""

import uuid
from typing import Any, Dict, Optional
from datetime import datetime, timedelta, timezone
import threading
import logging

from opsim.simulation import Simulation

logger = logging.getLogger(__name__)


class SimulationRun:
    """
    A finished (or stopped) simulation and its response payload

    Attributes:
        id: Unique identifier for the run
        simulation: The simulation; its result store stays readable
        summary: Response payload returned when the run finished
        created_at: Timestamp when the run was registered
        expires_at: Expiration timestamp
    """

    def __init__(
        self,
        simulation: Simulation,
        summary: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
        ttl_hours: Optional[int] = None,
    ):
        self.id = run_id or str(uuid.uuid4())
        self.simulation = simulation
        self.summary = summary or {}
        self.created_at = datetime.now(timezone.utc)

        ttl = ttl_hours if ttl_hours is not None else 24
        self.expires_at = self.created_at + timedelta(hours=ttl)

    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.simulation.name,
            "status": self.simulation.status.value,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class RunRegistry:
    """
    Thread-safe in-memory registry of simulation runs

    Expired runs are dropped on access; at capacity the oldest run is evicted
    and its result store closed.
    """

    def __init__(self, max_size: int = 20):
        self._runs: Dict[str, SimulationRun] = {}
        self._lock = threading.RLock()
        self.max_size = max_size

    def store(self, run: SimulationRun) -> str:
        """
        Register a run

        Returns:
            Run ID
        """
        with self._lock:
            self._cleanup_expired()
            if len(self._runs) >= self.max_size:
                self._evict_oldest()
            self._runs[run.id] = run
            logger.debug(f"Registered simulation run: {run.id}")
            return run.id

    def get(self, run_id: str) -> Optional[SimulationRun]:
        """Return the run, or None when unknown or expired"""
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return None
            if run.is_expired():
                self._drop(run_id)
                logger.debug(f"Run {run_id} expired and removed")
                return None
            return run

    def delete(self, run_id: str) -> bool:
        with self._lock:
            if run_id in self._runs:
                self._drop(run_id)
                logger.debug(f"Deleted simulation run: {run_id}")
                return True
            return False

    def __len__(self) -> int:
        return len(self._runs)

    def _drop(self, run_id: str) -> None:
        # Must hold self._lock
        run = self._runs.pop(run_id)
        if run.simulation.store is not None:
            run.simulation.store.close()

    def _cleanup_expired(self) -> None:
        for run_id in [rid for rid, run in self._runs.items() if run.is_expired()]:
            self._drop(run_id)
            logger.debug(f"Cleaned up expired run: {run_id}")

    def _evict_oldest(self) -> None:
        if not self._runs:
            return
        oldest_id = min(self._runs, key=lambda rid: self._runs[rid].created_at)
        self._drop(oldest_id)
        logger.debug(f"Evicted oldest run: {oldest_id}")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._cleanup_expired()
            return {
                "size": len(self._runs),
                "max_size": self.max_size,
                "runs": [run.to_dict() for run in self._runs.values()],
            }


# Global registry instance (singleton pattern)
_run_registry: Optional[RunRegistry] = None
_registry_lock = threading.Lock()


def get_run_registry() -> RunRegistry:
    """
    Get the global run registry

    Returns:
        RunRegistry singleton instance
    """
    global _run_registry

    if _run_registry is None:
        with _registry_lock:
            if _run_registry is None:
                from opsim.config import get_settings
                config = get_settings()
                _run_registry = RunRegistry(max_size=config.simulation_store_max_size)
                logger.info(
                    f"Initialized run registry with max_size={config.simulation_store_max_size}"
                )

    return _run_registry
