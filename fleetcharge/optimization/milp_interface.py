# fleetcharge/optimization/milp_interface.py
"""
Clean interface between FleetBundle and the model builder.
Produces the read-only parameter snapshot every sweep point is built from.
"""

from types import MappingProxyType
from typing import Any, Dict, List, Mapping
import numpy as np

from ..exceptions import DataError
from ..schema import FleetBundle
from .registry import SYMBOLS


def _frozen(arr) -> np.ndarray:
    arr = np.array(arr)
    arr.setflags(write=False)
    return arr


class FleetDataInterface:
    """Clean handoff from FleetBundle to the MILP model builder"""

    def __init__(self, bundle: FleetBundle):
        self.bundle = bundle
        self.T = bundle.T
        self._validate_bundle()

    def _validate_bundle(self):
        """Ensure bundle is ready for MILP"""
        try:
            self.bundle.validate()
        except DataError:
            raise
        except Exception as e:
            raise DataError(f"Bundle validation failed: {e}") from e

    def to_milp_params(self) -> Mapping[str, Any]:
        """Convert FleetBundle to a read-only MILP parameter mapping"""
        b = self.bundle

        params: Dict[str, Any] = {}

        # =================================================================
        # TIME AND INDEXING
        # =================================================================
        params.update({
            "T": self.T,
            "time_index": _frozen(b.horizon.index()),
            "work_t": _frozen(b.horizon.work_mask()),
        })

        # =================================================================
        # SETS
        # =================================================================
        R = tuple(b.resource_ids)
        A = {r: tuple(a.activity_id for a in b.activities_for(r)) for r in R}
        params.update({
            "R": R,
            "A": MappingProxyType(A),
            "RA": tuple((r, a) for r in R for a in A[r]),
        })

        # =================================================================
        # RESOURCE PARAMETERS
        # =================================================================
        params.update({
            "C_r": MappingProxyType({r.resource_id: r.capacity_kwh for r in b.fleet}),
            "P_r": MappingProxyType({r.resource_id: r.charge_rate_kw for r in b.fleet}),
            "E_r": MappingProxyType({r.resource_id: r.consumption_kwh_per_hour for r in b.fleet}),
            "rho_r": MappingProxyType({r: b.reserve_for(r) for r in R}),
            "SoC_0": 1.0,   # every resource starts the week fully charged
        })

        # =================================================================
        # ACTIVITY PARAMETERS
        # =================================================================
        params.update({
            "ES_ra": MappingProxyType({(a.resource_id, a.activity_id): a.earliest_start for a in b.activities}),
            "LE_ra": MappingProxyType({(a.resource_id, a.activity_id): a.latest_end for a in b.activities}),
            "D_ra": MappingProxyType({(a.resource_id, a.activity_id): a.duration_hours for a in b.activities}),
        })

        # =================================================================
        # PRICES AND PENALTIES
        # =================================================================
        params.update({
            "price_t": _frozen(b.price_array),
            "w_delay": b.penalties.delay_per_hour,
            "w_outside": b.penalties.outside_work_per_hour,
        })

        missing = set(SYMBOLS) - set(params)
        assert not missing, f"parameter snapshot lacks symbols {sorted(missing)}"

        return MappingProxyType(params)

    def get_scenario_summary(self) -> Dict[str, Any]:
        """Get high-level scenario summary for logging/reporting"""
        b = self.bundle
        n_activities = len(b.activities)
        total_engaged = sum(a.duration_hours for a in b.activities)
        start_candidates = sum(
            min(a.latest_end, self.T - a.duration_hours) - a.earliest_start + 1
            for a in b.activities
        )

        return {
            "scenario_id": f"{len(b.fleet)}res_{n_activities}act_{self.T}h",
            "horizon_hours": self.T,
            "work_band": f"{b.horizon.work_start_hour:02d}-{b.horizon.work_end_hour:02d}",
            "num_resources": len(b.fleet),
            "num_activities": n_activities,
            "total_engaged_hours": total_engaged,
            "total_capacity_kwh": sum(r.capacity_kwh for r in b.fleet),
            "avg_price": float(np.mean(b.price_array)),
            "min_price": float(np.min(b.price_array)),
            "max_price": float(np.max(b.price_array)),
            "reserve_margin": b.reserve_margin,
            # binaries: charge + engaged + start selection
            "estimated_binaries": len(b.fleet) * self.T + n_activities * self.T + start_candidates,
        }

    def validate_milp_readiness(self) -> List[str]:
        """Soft checks that do not make the data malformed but often make the model infeasible"""
        errors = []
        b = self.bundle

        for r in b.fleet:
            acts = b.activities_for(r.resource_id)
            if not acts:
                continue

            # Sequential execution must fit in the horizon
            total = sum(a.duration_hours for a in acts)
            if acts[0].earliest_start + total > self.T:
                errors.append(
                    f"resource {r.resource_id!r}: activities need {total}h from hour "
                    f"{acts[0].earliest_start}, beyond the {self.T}h horizon"
                )

            # One engaged hour must leave the reserve intact
            reserve = b.reserve_for(r.resource_id) * r.capacity_kwh
            if r.consumption_kwh_per_hour + reserve > r.capacity_kwh:
                errors.append(
                    f"resource {r.resource_id!r}: one hour of consumption plus reserve "
                    f"exceeds capacity {r.capacity_kwh} kWh"
                )

        return errors


def load_parameters(fleet, activities, prices, penalties=None, horizon=None,
                    reserve_margin: float = 0.04) -> Mapping[str, Any]:
    """One-liner from raw tables to the validated read-only parameter snapshot"""
    bundle = FleetBundle.load(fleet, activities, prices, penalties=penalties,
                              horizon=horizon, reserve_margin=reserve_margin)
    return FleetDataInterface(bundle).to_milp_params()
