# fleetcharge/optimization/solvers.py
"""
Solver adapters: hand a pyomo model to an external MILP solver through
SolverFactory and translate the outcome into a SolveResult.

Backends:
    gurobi - gurobi_direct (gurobipy), one managed Env per solve
    highs  - appsi_highs (highspy), no license required
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Type, Union

import gurobipy as gp
import pyomo.environ as pyo
from pyomo.common.collections import ComponentMap
from pyomo.common.errors import ApplicationError
from pyomo.opt import TerminationCondition

logger = logging.getLogger(__name__)


class SolveStatus(str, Enum):
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"           # incumbent without proven optimality
    INFEASIBLE = "infeasible"
    UNBOUNDED = "unbounded"
    TIMED_OUT = "timed_out"
    SOLVER_ERROR = "solver_error"

    def __str__(self):
        return self.name


@dataclass
class SolveResult:
    """Outcome of one solver invocation"""
    status: SolveStatus
    values: Optional[ComponentMap] = None       # VarData -> value
    objective_value: Optional[float] = None
    solve_time: float = 0.0
    message: str = ""
    best_bound: Optional[float] = None
    attempts: int = 1

    @property
    def is_success(self) -> bool:
        """Usable for extraction"""
        return self.status in (SolveStatus.OPTIMAL, SolveStatus.FEASIBLE)

    @property
    def has_solution(self) -> bool:
        return self.values is not None


_OPTIMAL = {TerminationCondition.optimal, TerminationCondition.globallyOptimal,
            TerminationCondition.locallyOptimal}
_INFEASIBLE = {TerminationCondition.infeasible, TerminationCondition.infeasibleOrUnbounded}
# Stopped early; usable only when an incumbent came back
_INCUMBENT = {TerminationCondition.feasible, TerminationCondition.maxIterations,
              TerminationCondition.userInterrupt, TerminationCondition.resourceInterrupt,
              TerminationCondition.other}


def classify(termination: TerminationCondition, has_incumbent: bool) -> SolveStatus:
    """Map a pyomo termination condition onto a SolveStatus"""
    if termination in _OPTIMAL:
        return SolveStatus.OPTIMAL
    if termination == TerminationCondition.maxTimeLimit:
        return SolveStatus.TIMED_OUT
    if termination in _INFEASIBLE:
        return SolveStatus.INFEASIBLE
    if termination == TerminationCondition.unbounded:
        return SolveStatus.UNBOUNDED
    if termination in _INCUMBENT and has_incumbent:
        return SolveStatus.FEASIBLE
    return SolveStatus.SOLVER_ERROR


def _has_incumbent(results) -> bool:
    return len(results.solution) > 0 and len(results.solution(0).variable) > 0


def _collect(model: pyo.ConcreteModel, results, label: str, elapsed: float) -> SolveResult:
    """Load the incumbent (if any) onto the model and snapshot its values"""
    termination = results.solver.termination_condition
    has_incumbent = _has_incumbent(results)
    outcome = classify(termination, has_incumbent)

    result = SolveResult(outcome, solve_time=elapsed,
                         message=f"{label} termination: {termination}")

    if has_incumbent and outcome in (SolveStatus.OPTIMAL, SolveStatus.FEASIBLE, SolveStatus.TIMED_OUT):
        model.solutions.load_from(results)
        result.values = ComponentMap((v, v.value) for v in model.component_data_objects(pyo.Var))

        objective = next(model.component_data_objects(pyo.Objective, active=True))
        result.objective_value = pyo.value(objective)
        bound = (results.problem.upper_bound if objective.sense == pyo.maximize
                 else results.problem.lower_bound)
        if isinstance(bound, (int, float)) and math.isfinite(bound):
            result.best_bound = float(bound)

    logger.info(f"{label} {model.name}: {outcome} in {elapsed:.2f}s")
    return result


class SolverBackend(ABC):
    """Solve contract shared by all backends"""

    name = "abstract"

    @abstractmethod
    def solve(self, model: pyo.ConcreteModel, time_limit: Optional[float] = None,
              mip_gap: Optional[float] = None) -> SolveResult:
        """
        Solve a model within a time limit.

        Values are only returned for OPTIMAL/FEASIBLE results, or for
        TIMED_OUT when an incumbent exists. Backend failures must be
        reported as SOLVER_ERROR, never raised.
        """

    def __repr__(self):
        return f"<{type(self).__name__}>"


class GurobiBackend(SolverBackend):
    """Gurobi via pyomo's gurobi_direct interface"""

    name = "gurobi"

    def __init__(self, threads: Optional[int] = None, **params):
        """
        Args:
            threads: Gurobi Threads parameter per solve
            **params: Extra Gurobi parameters applied to every model
        """
        self.params = dict(params)
        if threads is not None:
            self.params["Threads"] = threads

    def solve(self, model: pyo.ConcreteModel, time_limit: Optional[float] = None,
              mip_gap: Optional[float] = None) -> SolveResult:
        start = time.perf_counter()
        options = {"OutputFlag": 0, **self.params}
        if time_limit is not None:
            options["TimeLimit"] = time_limit
        if mip_gap is not None:
            options["MIPGap"] = mip_gap

        # Managed environment so concurrent solves never share state
        opt = pyo.SolverFactory("gurobi_direct", manage_env=True, options=options)
        try:
            logger.debug(f"Gurobi solve {model.name}: TimeLimit={time_limit}, MIPGap={mip_gap}")
            results = opt.solve(model, load_solutions=False, tee=False)
            return _collect(model, results, "Gurobi", time.perf_counter() - start)
        except (ApplicationError, gp.GurobiError, RuntimeError, ValueError) as e:
            logger.warning(f"Gurobi failed on {model.name}: {e}")
            return SolveResult(SolveStatus.SOLVER_ERROR, message=str(e),
                               solve_time=time.perf_counter() - start)
        finally:
            opt.close()


class HighsBackend(SolverBackend):
    """HiGHS via pyomo's appsi_highs interface"""

    name = "highs"

    def __init__(self, presolve: bool = True):
        self.presolve = presolve

    def solve(self, model: pyo.ConcreteModel, time_limit: Optional[float] = None,
              mip_gap: Optional[float] = None) -> SolveResult:
        start = time.perf_counter()
        opt = pyo.SolverFactory("appsi_highs")
        if not opt.available(exception_flag=False):
            return SolveResult(SolveStatus.SOLVER_ERROR, message="HiGHS (highspy) is not available")

        opt.options["presolve"] = "on" if self.presolve else "off"
        if time_limit is not None:
            opt.options["time_limit"] = float(time_limit)
        if mip_gap is not None:
            opt.options["mip_rel_gap"] = float(mip_gap)

        try:
            logger.debug(f"HiGHS solve {model.name}: {dict(opt.options)}")
            results = opt.solve(model, load_solutions=False, tee=False)
            return _collect(model, results, "HiGHS", time.perf_counter() - start)
        except (ApplicationError, RuntimeError, ValueError) as e:
            logger.warning(f"HiGHS failed on {model.name}: {e}")
            return SolveResult(SolveStatus.SOLVER_ERROR, message=str(e),
                               solve_time=time.perf_counter() - start)


BACKENDS: Dict[str, Type[SolverBackend]] = {
    GurobiBackend.name: GurobiBackend,
    HighsBackend.name: HighsBackend,
}


def get_backend(backend: Union[str, SolverBackend], **kwargs) -> SolverBackend:
    """Resolve a backend by name; instances pass through unchanged"""
    if isinstance(backend, SolverBackend):
        return backend
    try:
        cls = BACKENDS[str(backend).lower()]
    except KeyError:
        raise ValueError(f"Unknown solver backend {backend!r}; choose from {sorted(BACKENDS)}")
    return cls(**kwargs)


def solve_with_retry(backend: SolverBackend, model: pyo.ConcreteModel,
                     time_limit: Optional[float] = None,
                     mip_gap: Optional[float] = None,
                     relax_factor: float = 2.0) -> SolveResult:
    """
    Solve once; on SOLVER_ERROR retry exactly once with a relaxed time limit.
    Any other status is final.
    """
    result = backend.solve(model, time_limit=time_limit, mip_gap=mip_gap)
    if result.status != SolveStatus.SOLVER_ERROR:
        return result

    relaxed = time_limit * relax_factor if time_limit is not None else None
    logger.warning(f"{model.name}: solver error ({result.message}); retrying with time limit {relaxed}")
    retry = backend.solve(model, time_limit=relaxed, mip_gap=mip_gap)
    return replace(retry, attempts=result.attempts + 1)
