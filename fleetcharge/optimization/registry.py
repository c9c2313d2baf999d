# fleetcharge/optimization/registry.py
"""
Registry mapping between parameter snapshot keys and the notation of the
scheduling formulation. FleetDataInterface.to_milp_params() emits exactly
these keys.
"""

from typing import Dict, List

# Parameter symbols
SYMBOLS = {
    # ============================================================
    # TIME AND INDEXING
    # ============================================================
    "T": "H - Number of hourly slots in the horizon",
    "time_index": "t ∈ {0,...,H-1} - Hour indices",
    "work_t": "W_t - True if hour t lies inside the daily work band",

    # ============================================================
    # SETS
    # ============================================================
    "R": "R - Fleet resources",
    "A": "A_r - Activities of resource r in execution order",
    "RA": "(r, a) - All resource/activity pairs",

    # ============================================================
    # RESOURCE PARAMETERS
    # ============================================================
    "C_r": "C_r - Battery capacity (kWh)",
    "P_r": "P_r - Charge rate (kW, energy per charged hour)",
    "E_r": "E_r - Consumption per engaged hour (kWh)",
    "rho_r": "ρ_r - Forward reserve margin (fraction of C_r)",
    "SoC_0": "SoC_0 - Initial battery level (fraction of C_r)",

    # ============================================================
    # ACTIVITY PARAMETERS
    # ============================================================
    "ES_ra": "ES_ra - Earliest start hour",
    "LE_ra": "LE_ra - Latest end hour",
    "D_ra": "D_ra - Duration (hours)",

    # ============================================================
    # PRICES AND PENALTIES
    # ============================================================
    "price_t": "π_t - Electricity price (per kWh)",
    "w_delay": "w^delay - Penalty per hour finished past LE_ra",
    "w_outside": "w^out - Penalty per engaged hour outside the work band",
}

# Decision variable symbols
VARIABLES = {
    "charge": "x_rt ∈ {0,1} - Resource r occupies the charger in hour t",
    "battery": "b_rt ∈ [0, C_r] - Battery level at hour t (kWh)",
    "engaged": "y_rat ∈ {0,1} - Resource r performs activity a in hour t",
    "start_at": "z_ras ∈ {0,1} - Activity a of r starts at hour s",
    "start": "s_ra - Actual start hour",
    "delay": "δ_ra ≥ 0 - Hours finished past LE_ra",
    "outside_work": "o_ra ≥ 0 - Engaged hours outside the work band",
}


def describe(keys: List[str] = None) -> Dict[str, str]:
    """Return symbol descriptions for the given keys (all parameters and variables by default)"""
    table = {**SYMBOLS, **VARIABLES}
    if keys is None:
        return table
    return {k: table[k] for k in keys if k in table}
