# fleetcharge/optimization/milp_builder.py
"""
MILP model builder for joint fleet charging and activity scheduling.

Translates a read-only parameter snapshot plus a terminal state-of-charge
target into a pyomo ConcreteModel. The builder never solves anything.

Activity placement uses a time-indexed start selection:
    sum_s z[r,a,s] = 1,  start[r,a] = sum_s s * z[r,a,s],
    engaged[r,a,t] = sum_{s <= t < s + D} z[r,a,s]
so engagement is always one contiguous block of exactly D hours inside
[start, start + D).
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Mapping, Optional, Tuple

import numpy as np
import pyomo.environ as pyo

from ..exceptions import ExtractionError, ModelConstructionError

logger = logging.getLogger(__name__)


@dataclass
class FleetAssignment:
    """Solver values arranged by resource / activity / hour"""
    status: Any
    target: float
    resources: Tuple[Hashable, ...]
    activities: Tuple[Tuple[Hashable, int], ...]   # (resource, activity) row order
    objective_value: Optional[float]

    charge: np.ndarray          # (R, T)
    battery: np.ndarray         # (R, T)
    engaged: np.ndarray         # (len(activities), T)
    start: np.ndarray           # (len(activities),)
    delay: np.ndarray
    outside_work: np.ndarray


@dataclass
class FleetModel:
    """
    Built pyomo model for one terminal target.

    Variable families live on the model itself (model.charge, model.battery,
    model.engaged, model.start_at, model.start, model.delay, model.outside_work),
    as do the objective components (model.energy_cost, model.delay_cost,
    model.off_hours_cost).
    """
    model: pyo.ConcreteModel
    params: Mapping[str, Any]
    target: float

    def assignment(self, result) -> FleetAssignment:
        """Arrange a SolveResult's variable values by model index sets"""
        if result.values is None:
            raise ExtractionError(f"No variable values available (status {result.status})")

        values = result.values
        m = self.model
        p = self.params
        T = p["T"]
        R = p["R"]
        RA = p["RA"]

        def val(var):
            x = values.get(var)
            return np.nan if x is None else float(x)

        return FleetAssignment(
            status=result.status,
            target=self.target,
            resources=tuple(R),
            activities=tuple(RA),
            objective_value=result.objective_value,
            charge=np.array([[val(m.charge[r, t]) for t in range(T)] for r in R]),
            battery=np.array([[val(m.battery[r, t]) for t in range(T)] for r in R]),
            engaged=np.array([[val(m.engaged[r, a, t]) for t in range(T)] for r, a in RA]),
            start=np.array([val(m.start[ra]) for ra in RA]),
            delay=np.array([val(m.delay[ra]) for ra in RA]),
            outside_work=np.array([val(m.outside_work[ra]) for ra in RA]),
        )


def candidate_starts(params: Mapping[str, Any], ra: Tuple) -> range:
    """Admissible start hours: inside [ES, LE] and finishing inside the horizon"""
    last = min(params["LE_ra"][ra], params["T"] - params["D_ra"][ra])
    return range(params["ES_ra"][ra], last + 1)


def validate_target(target: float) -> float:
    try:
        target = float(target)
    except (TypeError, ValueError):
        raise ModelConstructionError(f"Terminal target must be a number, got {target!r}")
    if not math.isfinite(target) or not 0.0 < target <= 1.0:
        raise ModelConstructionError(f"Terminal target {target} outside (0, 1]")
    return target


def model_size(model: pyo.ConcreteModel) -> Dict[str, int]:
    """Count scalar variables, binaries and active constraints"""
    variables = list(model.component_data_objects(pyo.Var))
    return {
        "variables": len(variables),
        "binaries": sum(1 for v in variables if v.is_binary()),
        "constraints": sum(1 for _ in model.component_data_objects(pyo.Constraint, active=True)),
    }


def violated_constraints(model: pyo.ConcreteModel, tol: float = 1e-6) -> List[str]:
    """Names of active constraints not satisfied by the values loaded on the model"""
    return [
        c.name for c in model.component_data_objects(pyo.Constraint, active=True)
        if c.lslack() < -tol or c.uslack() < -tol
    ]


class FleetModelBuilder:
    """
    Builds one MILP per terminal target from a shared parameter snapshot.
    Holds no per-build state, so one builder may serve concurrent sweep points.
    """

    def __init__(self, params: Mapping[str, Any]):
        """
        Args:
            params: Read-only snapshot from FleetDataInterface.to_milp_params()
        """
        self.params = params

    def build(self, target: float) -> FleetModel:
        """
        Construct sets, variables, constraints and objective for a terminal target.

        Args:
            target: Required end-of-horizon battery level as a fraction of capacity

        Returns:
            FleetModel ready to hand to a SolverBackend
        """
        target = validate_target(target)

        fm = FleetModel(model=pyo.ConcreteModel(name=f"fleet_schedule_soc{target:.3f}"),
                        params=self.params, target=target)

        self._build_sets(fm)
        self._build_variables(fm)
        self._build_objective(fm)
        self._build_battery_constraints(fm)
        self._build_charger_constraints(fm)
        self._build_activity_constraints(fm)

        size = model_size(fm.model)
        logger.info(f"Built {fm.model.name}: {size['variables']} vars "
                    f"({size['binaries']} binary), {size['constraints']} constraints "
                    f"for terminal target {target:.0%}")
        return fm

    def _build_sets(self, fm: FleetModel):
        p = self.params
        m = fm.model

        m.R = pyo.Set(initialize=list(p["R"]), ordered=True)
        m.T = pyo.RangeSet(0, p["T"] - 1)
        m.RA = pyo.Set(initialize=list(p["RA"]), dimen=2, ordered=True)
        # Admissible start hours only
        m.RAS = pyo.Set(initialize=[(*ra, s) for ra in p["RA"] for s in candidate_starts(p, ra)],
                        dimen=3, ordered=True)
        m.SEQ = pyo.Set(initialize=[(r, prev, nxt) for r in p["R"]
                                    for prev, nxt in zip(p["A"][r], p["A"][r][1:])],
                        dimen=3, ordered=True)

    def _build_variables(self, fm: FleetModel):
        """Create all decision variables"""
        p = self.params
        m = fm.model

        def start_bounds(m, r, a):
            starts = candidate_starts(p, (r, a))
            return starts.start, starts.stop - 1

        # ========== Resource x Time ==========
        m.charge = pyo.Var(m.R, m.T, within=pyo.Binary)
        m.battery = pyo.Var(m.R, m.T, within=pyo.NonNegativeReals,
                            bounds=lambda m, r, t: (0.0, p["C_r"][r]))

        # ========== Resource x Activity x Time ==========
        m.engaged = pyo.Var(m.RA, m.T, within=pyo.Binary)
        m.start_at = pyo.Var(m.RAS, within=pyo.Binary)

        # ========== Resource x Activity ==========
        m.start = pyo.Var(m.RA, within=pyo.NonNegativeReals, bounds=start_bounds)
        m.delay = pyo.Var(m.RA, within=pyo.NonNegativeReals)
        m.outside_work = pyo.Var(m.RA, within=pyo.NonNegativeReals)

    def _build_objective(self, fm: FleetModel):
        """Energy cost plus delay and off-hours penalties"""
        p = self.params
        m = fm.model

        m.energy_cost = pyo.Expression(expr=pyo.quicksum(
            float(p["price_t"][t]) * p["P_r"][r] * m.charge[r, t]
            for r in m.R for t in m.T
        ))
        m.delay_cost = pyo.Expression(
            expr=p["w_delay"] * pyo.quicksum(m.delay[ra] for ra in m.RA))
        m.off_hours_cost = pyo.Expression(
            expr=p["w_outside"] * pyo.quicksum(m.outside_work[ra] for ra in m.RA))

        m.objective = pyo.Objective(expr=m.energy_cost + m.delay_cost + m.off_hours_cost,
                                    sense=pyo.minimize)

    def _drawn(self, m, r, t):
        """Activities of r engaged in hour t"""
        return pyo.quicksum(m.engaged[r, a, t] for a in self.params["A"][r])

    def _build_battery_constraints(self, fm: FleetModel):
        """Initial level, dynamics, forward reserve and terminal target"""
        p = self.params
        m = fm.model
        last = p["T"] - 1

        # ========== Initial level ==========
        def initial_battery_rule(m, r):
            return m.battery[r, 0] == p["SoC_0"] * p["C_r"][r]
        m.initial_battery = pyo.Constraint(m.R, rule=initial_battery_rule)

        # ========== Dynamics ==========
        def battery_dynamics_rule(m, r, t):
            if t == 0:
                return pyo.Constraint.Skip
            return (m.battery[r, t] - m.battery[r, t - 1] - p["P_r"][r] * m.charge[r, t]
                    + p["E_r"][r] * self._drawn(m, r, t) == 0)
        m.battery_dynamics = pyo.Constraint(m.R, m.T, rule=battery_dynamics_rule)

        # ========== Forward reserve ==========
        # Enough energy for the next hour of work plus a reserve margin
        def forward_reserve_rule(m, r, t):
            if t == last:
                return pyo.Constraint.Skip
            return (m.battery[r, t] - p["E_r"][r] * self._drawn(m, r, t + 1)
                    >= p["rho_r"][r] * p["C_r"][r])
        m.forward_reserve = pyo.Constraint(m.R, m.T, rule=forward_reserve_rule)

        # ========== Terminal target ==========
        def terminal_soc_rule(m, r):
            return m.battery[r, last] >= fm.target * p["C_r"][r]
        m.terminal_soc = pyo.Constraint(m.R, rule=terminal_soc_rule)

    def _build_charger_constraints(self, fm: FleetModel):
        """Single shared charger; no charging while working; one activity at a time"""
        p = self.params
        m = fm.model

        def single_charger_rule(m, t):
            return pyo.quicksum(m.charge[r, t] for r in m.R) <= 1
        m.single_charger = pyo.Constraint(m.T, rule=single_charger_rule)

        def charge_or_work_rule(m, r, t):
            if not p["A"][r]:
                return pyo.Constraint.Skip
            return m.charge[r, t] + self._drawn(m, r, t) <= 1
        m.charge_or_work = pyo.Constraint(m.R, m.T, rule=charge_or_work_rule)

        def one_activity_rule(m, r, t):
            if len(p["A"][r]) <= 1:
                return pyo.Constraint.Skip
            return self._drawn(m, r, t) <= 1
        m.one_activity = pyo.Constraint(m.R, m.T, rule=one_activity_rule)

    def _build_activity_constraints(self, fm: FleetModel):
        """Start selection, engagement linkage, durations, ordering, delay and off-hours"""
        p = self.params
        m = fm.model
        off_hours = [t for t in m.T if not p["work_t"][t]]

        # ========== Start selection ==========
        def select_start_rule(m, r, a):
            return pyo.quicksum(m.start_at[r, a, s] for s in candidate_starts(p, (r, a))) == 1
        m.select_start = pyo.Constraint(m.RA, rule=select_start_rule)

        def start_time_rule(m, r, a):
            return m.start[r, a] - pyo.quicksum(
                s * m.start_at[r, a, s] for s in candidate_starts(p, (r, a))) == 0
        m.start_time = pyo.Constraint(m.RA, rule=start_time_rule)

        # ========== Engagement inside [start, start + D) ==========
        def engaged_window_rule(m, r, a, t):
            D = p["D_ra"][r, a]
            covering = [m.start_at[r, a, s] for s in candidate_starts(p, (r, a)) if s <= t < s + D]
            return m.engaged[r, a, t] - pyo.quicksum(covering) == 0
        m.engaged_window = pyo.Constraint(m.RA, m.T, rule=engaged_window_rule)

        # ========== Duration ==========
        def duration_rule(m, r, a):
            return pyo.quicksum(m.engaged[r, a, t] for t in m.T) == p["D_ra"][r, a]
        m.duration = pyo.Constraint(m.RA, rule=duration_rule)

        # ========== Delay past latest end ==========
        def lateness_rule(m, r, a):
            return m.delay[r, a] - m.start[r, a] >= p["D_ra"][r, a] - p["LE_ra"][r, a]
        m.lateness = pyo.Constraint(m.RA, rule=lateness_rule)

        # ========== Off-hours engagement ==========
        def off_hours_rule(m, r, a):
            return m.outside_work[r, a] - pyo.quicksum(m.engaged[r, a, t] for t in off_hours) == 0
        m.off_hours = pyo.Constraint(m.RA, rule=off_hours_rule)

        # ========== Sequential execution per resource ==========
        def sequence_rule(m, r, prev, nxt):
            return m.start[r, nxt] - m.start[r, prev] >= p["D_ra"][r, prev]
        m.sequence = pyo.Constraint(m.SEQ, rule=sequence_rule)


def build_model(params: Mapping[str, Any], target: float) -> FleetModel:
    """Build a fresh model for one terminal target"""
    return FleetModelBuilder(params).build(target)
