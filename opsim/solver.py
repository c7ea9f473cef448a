"""
Linear / mixed-integer model and a scipy (HiGHS) solver for it
The core only sees the Solver interface; this is the default backend
"""

from typing import Dict, List, Optional, Tuple
import logging
import time

import numpy as np
from scipy.optimize import linprog
from scipy.sparse import coo_matrix

from opsim.enums import SolverStatus
from opsim.exceptions import InvalidStateError
from opsim.optimization_container import ContainerArray

logger = logging.getLogger(__name__)

EQUAL = "eq"
LESS_EQUAL = "ub"


class LinearModel:
    """
    Minimization model: columns with bounds and costs, rows as sparse coefficient maps

    Attributes:
        optimizer: Solver backend name set by the problem
        log_output: Print the solver log for this model
        solution: Primal values after a solve
        duals: Row id -> marginal after a solve (empty for MILP)
        objective_value: Optimal objective after a solve
    """

    def __init__(self):
        self.costs: List[float] = []
        self.lower: List[Optional[float]] = []
        self.upper: List[Optional[float]] = []
        self.integrality: List[int] = []
        self.rows: List[Tuple[str, Dict[int, float], float]] = []
        self.optimizer: Optional[str] = None
        self.log_output = False
        self.solution: Optional[np.ndarray] = None
        self.duals: Dict[int, float] = {}
        self.objective_value: Optional[float] = None
        self.solve_time = 0.0

    @property
    def num_variables(self) -> int:
        return len(self.costs)

    @property
    def is_milp(self) -> bool:
        return any(self.integrality)

    def add_variables(
        self,
        shape: Tuple[int, int],
        lower: np.ndarray,
        upper: np.ndarray,
        cost: np.ndarray,
        integer: bool = False,
    ) -> np.ndarray:
        """
        Add a block of columns

        Returns:
            Column indices with the requested shape
        """
        count = shape[0] * shape[1]
        start = self.num_variables
        self.lower.extend(np.broadcast_to(lower, shape).ravel().tolist())
        self.upper.extend(np.broadcast_to(upper, shape).ravel().tolist())
        self.costs.extend(np.broadcast_to(cost, shape).ravel().tolist())
        self.integrality.extend([1 if integer else 0] * count)
        return np.arange(start, start + count).reshape(shape)

    def add_row(self, sense: str, coefficients: Dict[int, float], rhs: float) -> int:
        if sense not in (EQUAL, LESS_EQUAL):
            raise ValueError(f"Unknown row sense: {sense}")
        self.rows.append((sense, coefficients, float(rhs)))
        return len(self.rows) - 1

    def set_optimizer(self, name: Optional[str]) -> None:
        self.optimizer = name

    def close(self) -> None:
        self.solution = None
        self.duals = {}
        self.objective_value = None

    def _matrices(self, sense: str):
        row_ids = [i for i, row in enumerate(self.rows) if row[0] == sense]
        if not row_ids:
            return row_ids, None, None
        data, rr, cc = [], [], []
        rhs = np.empty(len(row_ids))
        for position, row_id in enumerate(row_ids):
            _, coefficients, value = self.rows[row_id]
            for column, coefficient in coefficients.items():
                rr.append(position)
                cc.append(column)
                data.append(coefficient)
            rhs[position] = value
        matrix = coo_matrix((data, (rr, cc)), shape=(len(row_ids), self.num_variables)).tocsr()
        return row_ids, matrix, rhs


class ScipySolver:
    """
    Solves LinearModel instances with scipy.optimize.linprog (HiGHS)

    Args:
        time_limit: Optional time limit in seconds
        log: Print the HiGHS log for every model
    """

    # linprog status codes
    _STATUS = {0: SolverStatus.FEASIBLE, 2: SolverStatus.INFEASIBLE}

    def __init__(self, time_limit: Optional[float] = None, log: bool = False):
        self.time_limit = time_limit
        self.log = log

    def optimize(self, model: LinearModel) -> SolverStatus:
        if model.optimizer is None:
            raise InvalidStateError("No optimizer has been set on the model")

        eq_ids, a_eq, b_eq = model._matrices(EQUAL)
        ub_ids, a_ub, b_ub = model._matrices(LESS_EQUAL)
        options: Dict[str, object] = {"disp": self.log or model.log_output}
        if self.time_limit is not None:
            options["time_limit"] = self.time_limit

        started = time.perf_counter()
        try:
            result = linprog(
                c=np.asarray(model.costs),
                A_ub=a_ub,
                b_ub=b_ub,
                A_eq=a_eq,
                b_eq=b_eq,
                bounds=list(zip(model.lower, model.upper)),
                integrality=np.asarray(model.integrality) if model.is_milp else None,
                method="highs",
                options=options,
            )
        except ValueError as e:
            logger.error(f"Solver rejected the model: {e}")
            return SolverStatus.ERROR
        finally:
            model.solve_time = time.perf_counter() - started

        status = self._STATUS.get(result.status, SolverStatus.ERROR)
        if status != SolverStatus.FEASIBLE:
            logger.warning(f"Solver finished with status {result.status}: {result.message}")
            return status

        model.solution = np.asarray(result.x)
        model.objective_value = float(result.fun)
        model.duals = {}
        if not model.is_milp:
            for ids, marginals in ((eq_ids, result.eqlin), (ub_ids, result.ineqlin)):
                if ids and marginals is not None:
                    model.duals.update(zip(ids, np.asarray(marginals.marginals).tolist()))
        logger.debug(
            f"Solved {model.num_variables} columns / {len(model.rows)} rows "
            f"in {model.solve_time:.3f}s, objective={model.objective_value:.4f}"
        )
        return status

    def get_primal(self, model: LinearModel, variable: ContainerArray) -> np.ndarray:
        if model.solution is None:
            raise InvalidStateError("Model has no solution")
        return model.solution[variable.refs]

    def get_dual(self, model: LinearModel, constraint: ContainerArray) -> np.ndarray:
        if model.is_milp:
            raise InvalidStateError("Duals are not available for mixed-integer models")
        lookup = np.vectorize(lambda row: model.duals.get(int(row), np.nan), otypes=[float])
        return lookup(constraint.refs)
