"""
Utility functions for validation and reporting.
"""

from .validators import validate_fleet_bundle, generate_validation_report, DataValidator

__all__ = ["validate_fleet_bundle", "generate_validation_report", "DataValidator"]
