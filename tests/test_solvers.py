# tests/test_solvers.py
"""Solver adapters and the single solver-error retry"""

import pyomo.environ as pyo
import pytest
from pyomo.opt import TerminationCondition

from fleetcharge.optimization.solvers import (GurobiBackend, HighsBackend, SolveResult,
                                              SolverBackend, SolveStatus, classify,
                                              get_backend, solve_with_retry)
from fleetcharge.optimization.milp_builder import build_model


def knapsack_model():
    """max x + y + 0.5 z  s.t.  x + 2y + z <= 3, binaries -> x = y = 1, z = 0"""
    m = pyo.ConcreteModel(name="knapsack")
    m.x = pyo.Var(within=pyo.Binary)
    m.y = pyo.Var(within=pyo.Binary)
    m.z = pyo.Var(within=pyo.Binary)
    m.weight = pyo.Constraint(expr=m.x + 2 * m.y + m.z <= 3)
    m.objective = pyo.Objective(expr=m.x + m.y + 0.5 * m.z, sense=pyo.maximize)
    return m


class ScriptedBackend(SolverBackend):
    """Returns a fixed sequence of results and records the time limits it saw"""

    name = "scripted"

    def __init__(self, *results):
        self.results = list(results)
        self.time_limits = []

    def solve(self, model, time_limit=None, mip_gap=None):
        self.time_limits.append(time_limit)
        return self.results.pop(0)


def test_small_mip(backend):
    m = knapsack_model()
    result = backend.solve(m, time_limit=10, mip_gap=0.0)
    assert result.status == SolveStatus.OPTIMAL
    assert result.is_success and result.has_solution
    assert result.objective_value == pytest.approx(2.0)
    assert [result.values[v] for v in (m.x, m.y, m.z)] == pytest.approx([1.0, 1.0, 0.0], abs=1e-6)
    # Incumbent is loaded back onto the model
    assert pyo.value(m.objective) == pytest.approx(2.0)


def test_infeasible(backend):
    m = pyo.ConcreteModel(name="infeasible")
    m.x = pyo.Var(within=pyo.Binary)
    m.y = pyo.Var(within=pyo.Binary)
    m.too_many = pyo.Constraint(expr=m.x + m.y >= 3)
    m.objective = pyo.Objective(expr=m.x + m.y)
    result = backend.solve(m, time_limit=10)
    assert result.status == SolveStatus.INFEASIBLE
    assert result.values is None
    assert not result.is_success


def test_objective_constant_and_no_constraints():
    m = pyo.ConcreteModel(name="bounds_only")
    m.x = pyo.Var(bounds=(1.5, 4.0))
    m.objective = pyo.Objective(expr=2 * m.x + 5)
    result = HighsBackend().solve(m)
    assert result.status == SolveStatus.OPTIMAL
    assert result.objective_value == pytest.approx(8.0)


@pytest.mark.parametrize("termination, incumbent, expected", [
    (TerminationCondition.optimal, True, SolveStatus.OPTIMAL),
    (TerminationCondition.globallyOptimal, True, SolveStatus.OPTIMAL),
    (TerminationCondition.maxTimeLimit, False, SolveStatus.TIMED_OUT),
    (TerminationCondition.maxTimeLimit, True, SolveStatus.TIMED_OUT),
    (TerminationCondition.infeasible, False, SolveStatus.INFEASIBLE),
    (TerminationCondition.infeasibleOrUnbounded, False, SolveStatus.INFEASIBLE),
    (TerminationCondition.unbounded, False, SolveStatus.UNBOUNDED),
    (TerminationCondition.userInterrupt, True, SolveStatus.FEASIBLE),
    (TerminationCondition.userInterrupt, False, SolveStatus.SOLVER_ERROR),
    (TerminationCondition.error, False, SolveStatus.SOLVER_ERROR),
    (TerminationCondition.licensingProblems, False, SolveStatus.SOLVER_ERROR),
])
def test_termination_mapping(termination, incumbent, expected):
    assert classify(termination, incumbent) == expected


def test_scenario_objective_matches_across_backends(params, gurobi_backend):
    highs = HighsBackend().solve(build_model(params, 0.5).model, time_limit=60, mip_gap=0.0)
    gurobi = gurobi_backend.solve(build_model(params, 0.5).model, time_limit=60, mip_gap=0.0)
    assert highs.status == gurobi.status == SolveStatus.OPTIMAL
    assert highs.objective_value == pytest.approx(gurobi.objective_value, abs=1e-6)


def test_get_backend():
    assert isinstance(get_backend("highs"), HighsBackend)
    assert isinstance(get_backend("GUROBI"), GurobiBackend)
    instance = HighsBackend()
    assert get_backend(instance) is instance
    with pytest.raises(ValueError, match="Unknown solver backend"):
        get_backend("cplex")


def test_retry_once_on_solver_error():
    backend = ScriptedBackend(
        SolveResult(SolveStatus.SOLVER_ERROR, message="numerical trouble"),
        SolveResult(SolveStatus.OPTIMAL, objective_value=0.0),
    )
    result = solve_with_retry(backend, knapsack_model(), time_limit=10, relax_factor=2.0)
    assert result.status == SolveStatus.OPTIMAL
    assert result.attempts == 2
    assert backend.time_limits == [10, 20]


def test_retry_gives_up_after_second_error():
    backend = ScriptedBackend(
        SolveResult(SolveStatus.SOLVER_ERROR, message="license"),
        SolveResult(SolveStatus.SOLVER_ERROR, message="license"),
    )
    result = solve_with_retry(backend, knapsack_model(), time_limit=5)
    assert result.status == SolveStatus.SOLVER_ERROR
    assert result.attempts == 2
    assert len(backend.time_limits) == 2


@pytest.mark.parametrize("status", [SolveStatus.INFEASIBLE, SolveStatus.TIMED_OUT,
                                    SolveStatus.UNBOUNDED, SolveStatus.OPTIMAL])
def test_no_retry_for_other_statuses(status):
    backend = ScriptedBackend(SolveResult(status))
    result = solve_with_retry(backend, knapsack_model(), time_limit=5)
    assert result.status == status
    assert result.attempts == 1
    assert backend.time_limits == [5]


def test_retry_without_time_limit():
    backend = ScriptedBackend(SolveResult(SolveStatus.SOLVER_ERROR), SolveResult(SolveStatus.INFEASIBLE))
    solve_with_retry(backend, knapsack_model(), time_limit=None)
    assert backend.time_limits == [None, None]
