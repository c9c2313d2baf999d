# fleetcharge/io.py
"""
I/O utilities for fleet scheduling scenarios and sweep results.
Supports YAML and JSON configuration with CSV tables and price series.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import numpy as np
import pandas as pd
import yaml
from pydantic import ValidationError

from .exceptions import DataError
from .schema import FleetBundle, ScenarioConfig

logger = logging.getLogger(__name__)

PRICE_COLUMN = "price"


class DataLoader:
    """Load scenario configuration, tables and price series."""

    @staticmethod
    def load_config(config_path: Union[str, Path],
                    prices_path: Optional[Union[str, Path]] = None) -> ScenarioConfig:
        """
        Load a ScenarioConfig from YAML/JSON.

        `fleet` and `activities` may be inline lists or paths to CSV files;
        prices may be inline, given by a `prices_file` key, or overridden by
        prices_path. Relative paths resolve against the config's directory.

        Raises:
            DataError: on unreadable files or invalid content
        """
        config_path = Path(config_path)
        config = DataLoader._read_mapping(config_path)
        base = config_path.parent

        for key in ("fleet", "activities"):
            if isinstance(config.get(key), str):
                config[key] = DataLoader.load_table(base / config[key]).to_dict("records")

        prices_file = config.pop("prices_file", None)
        if prices_path is not None:
            config["prices"] = DataLoader.load_prices(prices_path).tolist()
        elif prices_file is not None:
            config["prices"] = DataLoader.load_prices(base / prices_file).tolist()

        try:
            return ScenarioConfig(**config)
        except ValidationError as e:
            raise DataError(f"Invalid configuration {config_path.name}: {e}") from e

    @staticmethod
    def load_bundle(config_path: Union[str, Path],
                    prices_path: Optional[Union[str, Path]] = None) -> FleetBundle:
        """
        Load a validated FleetBundle from configuration (and optional price CSV).

        Returns:
            FleetBundle ready for FleetDataInterface
        """
        bundle = DataLoader.load_config(config_path, prices_path).to_bundle()
        logger.info(f"Data validation successful for {Path(config_path).name}")
        return bundle

    @staticmethod
    def _read_mapping(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise DataError(f"Config file not found: {path}")

        if path.suffix in [".yaml", ".yml"]:
            with open(path, "r") as f:
                config = yaml.safe_load(f)
        elif path.suffix == ".json":
            with open(path, "r") as f:
                config = json.load(f)
        else:
            raise DataError(f"Unsupported config format: {path.suffix}")

        if not isinstance(config, dict):
            raise DataError(f"{path.name} must contain a mapping at the top level")
        return config

    @staticmethod
    def load_prices(path: Union[str, Path]) -> np.ndarray:
        """Hourly price series from a CSV with a `price` column"""
        path = Path(path)
        if path.suffix != ".csv":
            raise DataError(f"Unsupported price series format: {path.suffix}")

        df = pd.read_csv(path)
        if PRICE_COLUMN not in df.columns:
            raise DataError(f"{path.name} has no '{PRICE_COLUMN}' column (found {list(df.columns)})")

        prices = pd.to_numeric(df[PRICE_COLUMN], errors="coerce").to_numpy(dtype=float)
        logger.info(f"Loaded {len(prices)} hourly prices from {path.name}")
        return prices

    @staticmethod
    def load_table(path: Union[str, Path]) -> pd.DataFrame:
        """Fleet or activity table from CSV"""
        path = Path(path)
        if not path.exists():
            raise DataError(f"Table not found: {path}")
        df = pd.read_csv(path)
        logger.debug(f"Loaded {len(df)} rows from {path.name}")
        return df


class DataWriter:
    """Write sweep tables and schedules."""

    @staticmethod
    def save_sweep(table: pd.DataFrame, output_path: Union[str, Path],
                   format: str = "csv", metadata: Optional[Dict[str, Any]] = None):
        """
        Save the sensitivity table.

        Args:
            table: Output of sweep_table()
            output_path: Output file path
            format: 'csv' (metadata in a sibling .meta.json) or 'json'
            metadata: Optional run metadata (backend, settings, scenario summary)
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if format == "csv":
            table.to_csv(output_path, index=False)
            if metadata is not None:
                with open(output_path.with_suffix(".meta.json"), "w") as f:
                    json.dump(metadata, f, indent=2, default=str)

        elif format == "json":
            # NaN is not valid JSON; failed metrics become null
            records = table.astype(object).where(table.notna(), None).to_dict("records")
            output = {"data": records, "metadata": metadata or {}}
            with open(output_path, "w") as f:
                json.dump(output, f, indent=2, default=str)
        else:
            raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Results saved to {output_path}")

    @staticmethod
    def save_schedule(schedule, output_dir: Union[str, Path], prefix: str = ""):
        """Write battery, charging and activity tables of a FleetSchedule as CSV"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        schedule.battery.to_csv(output_dir / f"{prefix}battery.csv")
        schedule.charging.to_csv(output_dir / f"{prefix}charging.csv")
        schedule.activities.to_csv(output_dir / f"{prefix}activities.csv", index=False)
        logger.info(f"Schedule tables saved to {output_dir}")


def synthetic_prices(hours: int = 168) -> np.ndarray:
    """Daily price shape: cheap nights, morning and evening peaks (per kWh)"""
    h = np.arange(hours) % 24
    prices = (0.18
              + 0.06 * np.exp(-((h - 8) ** 2) / 8.0)
              + 0.10 * np.exp(-((h - 19) ** 2) / 6.0)
              - 0.05 * ((h < 5) | (h >= 23)))
    return np.round(prices, 4)


def _day(d: int, start: int = 6, end: int = 16):
    return {"earliest_start": 24 * d + start, "latest_end": 24 * d + end}


def generate_template(output_path: Union[str, Path], hours: int = 168) -> Dict[str, Any]:
    """
    Generate a one-week, 7-resource / 9-activity scenario configuration.

    Args:
        output_path: Where to save the YAML template
        hours: Horizon length; activities beyond it are dropped

    Returns:
        The template as a dict
    """
    fleet = [
        {"resource_id": "EV1", "capacity_kwh": 80, "charge_rate_kw": 22, "consumption_kwh_per_hour": 10},
        {"resource_id": "EV2", "capacity_kwh": 60, "charge_rate_kw": 11, "consumption_kwh_per_hour": 8},
        {"resource_id": "EV3", "capacity_kwh": 100, "charge_rate_kw": 22, "consumption_kwh_per_hour": 12},
        {"resource_id": "EV4", "capacity_kwh": 75, "charge_rate_kw": 11, "consumption_kwh_per_hour": 9},
        {"resource_id": "EV5", "capacity_kwh": 90, "charge_rate_kw": 22, "consumption_kwh_per_hour": 10},
        {"resource_id": "EV6", "capacity_kwh": 60, "charge_rate_kw": 11, "consumption_kwh_per_hour": 7},
        {"resource_id": "EV7", "capacity_kwh": 70, "charge_rate_kw": 11, "consumption_kwh_per_hour": 8},
    ]

    activities = [
        {"resource_id": "EV1", "activity_id": 0, **_day(0), "duration_hours": 6},
        {"resource_id": "EV1", "activity_id": 1, **_day(2), "duration_hours": 6},
        {"resource_id": "EV2", "activity_id": 0, **_day(1), "duration_hours": 5},
        {"resource_id": "EV3", "activity_id": 0, **_day(0, 8), "duration_hours": 7},
        {"resource_id": "EV3", "activity_id": 1, **_day(3), "duration_hours": 6},
        {"resource_id": "EV4", "activity_id": 0, **_day(2), "duration_hours": 6},
        {"resource_id": "EV5", "activity_id": 0, **_day(4), "duration_hours": 8},
        {"resource_id": "EV6", "activity_id": 0, **_day(1), "duration_hours": 6},
        {"resource_id": "EV7", "activity_id": 0, **_day(5), "duration_hours": 6},
    ]
    activities = [a for a in activities if a["earliest_start"] + a["duration_hours"] <= hours]

    template = {
        "horizon": {"hours": hours, "work_start_hour": 6, "work_end_hour": 16},
        "penalties": {"delay_per_hour": 1000.0, "outside_work_per_hour": 1000.0},
        "reserve_margin": 0.04,
        "fleet": fleet,
        "activities": activities,
        "prices": synthetic_prices(hours).tolist(),
        "solver": {"backend": "gurobi", "time_limit": 300, "mip_gap": 0.001,
                   "max_workers": 1, "solver_sessions": 1},
        "sweep": {"targets": [0.2, 0.4, 0.6, 0.8, 1.0]},
    }

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.safe_dump(template, f, default_flow_style=False, sort_keys=False)

    logger.info(f"Template saved to {output_path}")
    return template


def sweep_metadata(settings: Any, summary: Dict[str, Any],
                   targets: Iterable[float]) -> Dict[str, Any]:
    """Metadata block written alongside a sweep table"""
    return {
        "scenario": summary,
        "solver": settings.model_dump() if hasattr(settings, "model_dump") else dict(settings),
        "targets": list(targets),
    }
