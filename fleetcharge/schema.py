# fleetcharge/schema.py
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from typing import Any, Dict, Iterable, List, Literal, NamedTuple, Optional, Tuple, Union
import numpy as np
import pandas as pd

from .exceptions import DataError

ResourceId = Union[int, str]
BackendName = Literal["gurobi", "highs"]

HOURS_PER_DAY = 24


class Horizon(BaseModel):
    model_config = ConfigDict(frozen=True)

    hours: int = Field(default=168, gt=0)          # H, one week by default
    work_start_hour: int = Field(default=6, ge=0, le=HOURS_PER_DAY)
    work_end_hour: int = Field(default=16, ge=0, le=HOURS_PER_DAY)   # exclusive

    @field_validator("work_end_hour")
    @classmethod
    def end_after_start(cls, v, info):
        start = info.data.get("work_start_hour")
        if start is not None and v <= start:
            raise ValueError("work_end_hour must be greater than work_start_hour")
        return v

    def index(self) -> np.ndarray:
        return np.arange(self.hours)

    def is_work_hour(self, t: int) -> bool:
        return self.work_start_hour <= t % HOURS_PER_DAY < self.work_end_hour

    def work_mask(self) -> np.ndarray:
        hour_of_day = self.index() % HOURS_PER_DAY
        return (hour_of_day >= self.work_start_hour) & (hour_of_day < self.work_end_hour)


class TimeSlot(NamedTuple):
    index: int
    price: float
    is_work_hour: bool


class Resource(BaseModel):
    """A battery-powered fleet member sharing the single charging station"""
    model_config = ConfigDict(frozen=True)

    resource_id: ResourceId
    capacity_kwh: float = Field(gt=0)               # C_r
    charge_rate_kw: float = Field(gt=0)             # P_r, energy per charged hour
    consumption_kwh_per_hour: float = Field(ge=0)   # E_r, drawn per engaged hour

    # Overrides the bundle-wide reserve margin when set
    reserve_margin: Optional[float] = Field(default=None, ge=0, lt=1)


class Activity(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: ResourceId
    activity_id: int = Field(ge=0)
    earliest_start: int = Field(ge=0)       # ES_ra
    latest_end: int                         # LE_ra
    duration_hours: int = Field(gt=0)       # D_ra


class PenaltyWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    delay_per_hour: float = Field(default=1000.0, ge=0)          # w_delay
    outside_work_per_hour: float = Field(default=1000.0, ge=0)   # w_outside


class SolverSettings(BaseModel):
    backend: BackendName = "gurobi"
    time_limit: Optional[float] = Field(default=300.0, gt=0)
    mip_gap: Optional[float] = Field(default=0.001, ge=0)
    max_workers: int = Field(default=1, ge=1)
    solver_sessions: int = Field(default=1, ge=1)
    retry_relax_factor: float = Field(default=2.0, ge=1)


class SweepSettings(BaseModel):
    targets: List[float] = [0.2, 0.4, 0.6, 0.8, 1.0]


class FleetBundle(BaseModel):
    """
    Read-only parameter snapshot for one scheduling run.
    Build through FleetBundle.load() to get DataError semantics.
    """
    model_config = ConfigDict(frozen=True)

    horizon: Horizon
    fleet: Tuple[Resource, ...]
    activities: Tuple[Activity, ...]
    prices: Tuple[float, ...]                 # price_t per kWh
    penalties: PenaltyWeights = PenaltyWeights()
    reserve_margin: float = Field(default=0.04, ge=0, lt=1)   # rho

    @classmethod
    def load(cls,
             fleet: Any,
             activities: Any,
             prices: Any,
             penalties: Optional[Union[PenaltyWeights, Dict[str, float]]] = None,
             horizon: Optional[Union[Horizon, Dict[str, int], int]] = None,
             reserve_margin: float = 0.04) -> "FleetBundle":
        """
        Validate raw tables into a FleetBundle.

        Args:
            fleet: DataFrame, list of dicts or Resource objects
            activities: DataFrame, list of dicts or Activity objects
            prices: Hourly price series (list, ndarray or Series)
            penalties: PenaltyWeights or dict of its fields
            horizon: Horizon, dict of its fields, or number of hours.
                Defaults to one hour per price entry.
            reserve_margin: Default forward reserve as a fraction of capacity

        Raises:
            DataError: on any schema or structural violation
        """
        try:
            price_list = [float(p) for p in np.asarray(prices, dtype=float).ravel()]

            if horizon is None:
                horizon = Horizon(hours=len(price_list)) if price_list else Horizon()
            elif isinstance(horizon, int):
                horizon = Horizon(hours=horizon)

            bundle = cls(
                horizon=horizon,
                fleet=tuple(_records(fleet)),
                activities=tuple(_records(activities)),
                prices=tuple(price_list),
                penalties=penalties if penalties is not None else PenaltyWeights(),
                reserve_margin=reserve_margin,
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise DataError(f"Invalid fleet data: {e}") from e

        bundle.validate()
        return bundle

    def validate(self):
        """Run all structural checks"""
        self.validate_lengths()
        self.validate_references()
        self.validate_activity_windows()

    def validate_lengths(self):
        """Price series must cover exactly the horizon"""
        if len(self.prices) != self.horizon.hours:
            raise DataError(f"prices length {len(self.prices)} != horizon {self.horizon.hours}")
        if not np.all(np.isfinite(self.prices)):
            raise DataError("prices contain NaN or infinite values")

    def validate_references(self):
        """Unique ids, and every activity belongs to a known resource"""
        ids = [r.resource_id for r in self.fleet]
        if not ids:
            raise DataError("fleet is empty")
        if len(set(ids)) != len(ids):
            raise DataError(f"duplicate resource ids in fleet: {ids}")

        seen = set()
        for act in self.activities:
            if act.resource_id not in ids:
                raise DataError(f"activity {act.activity_id} references unknown resource {act.resource_id!r}")
            key = (act.resource_id, act.activity_id)
            if key in seen:
                raise DataError(f"duplicate activity {act.activity_id} for resource {act.resource_id!r}")
            seen.add(key)

    def validate_activity_windows(self):
        """Windows must admit the duration and fit inside the horizon"""
        H = self.horizon.hours
        for act in self.activities:
            if act.earliest_start + act.duration_hours > act.latest_end:
                raise DataError(
                    f"activity {act.activity_id} of {act.resource_id!r}: window "
                    f"[{act.earliest_start}, {act.latest_end}] cannot hold {act.duration_hours}h"
                )
            if act.earliest_start + act.duration_hours > H:
                raise DataError(
                    f"activity {act.activity_id} of {act.resource_id!r} cannot finish "
                    f"inside the {H}h horizon"
                )

    @property
    def T(self) -> int:
        """Number of hourly slots in the horizon"""
        return self.horizon.hours

    @property
    def resource_ids(self) -> List[ResourceId]:
        return [r.resource_id for r in self.fleet]

    @property
    def price_array(self) -> np.ndarray:
        return np.asarray(self.prices, dtype=float)

    def resource(self, resource_id: ResourceId) -> Resource:
        for r in self.fleet:
            if r.resource_id == resource_id:
                return r
        raise KeyError(resource_id)

    def activities_for(self, resource_id: ResourceId) -> List[Activity]:
        """Activities of one resource in execution (ascending id) order"""
        acts = [a for a in self.activities if a.resource_id == resource_id]
        return sorted(acts, key=lambda a: a.activity_id)

    def reserve_for(self, resource_id: ResourceId) -> float:
        override = self.resource(resource_id).reserve_margin
        return self.reserve_margin if override is None else override

    def time_slots(self) -> Tuple[TimeSlot, ...]:
        mask = self.horizon.work_mask()
        return tuple(
            TimeSlot(index=t, price=self.prices[t], is_work_hour=bool(mask[t]))
            for t in range(self.T)
        )


def _records(table: Any) -> Iterable[Any]:
    """Accept DataFrames, lists of dicts/models, or {id: fields} mappings"""
    if table is None:
        return []
    if isinstance(table, pd.DataFrame):
        return table.to_dict("records")
    if isinstance(table, dict):
        # {resource_id: {field: value}} style fleet table
        return [{"resource_id": key, **fields} for key, fields in table.items()]
    return list(table)


class ScenarioConfig(BaseModel):
    """Complete run configuration as read from YAML/JSON"""
    horizon: Horizon = Horizon()
    penalties: PenaltyWeights = PenaltyWeights()
    reserve_margin: float = Field(default=0.04, ge=0, lt=1)
    fleet: List[Resource]
    activities: List[Activity] = []
    prices: List[float]
    solver: SolverSettings = SolverSettings()
    sweep: SweepSettings = SweepSettings()

    def to_bundle(self) -> FleetBundle:
        return FleetBundle.load(
            fleet=self.fleet,
            activities=self.activities,
            prices=self.prices,
            penalties=self.penalties,
            horizon=self.horizon,
            reserve_margin=self.reserve_margin,
        )
