# fleetcharge/exceptions.py
"""
Exception types shared across the fleet scheduling package.
"""


class DataError(ValueError):
    """Malformed or inconsistent input parameters."""
    pass


class ModelConstructionError(ValueError):
    """Invalid model construction request, e.g. a terminal target outside (0, 1]."""
    pass


class ExtractionError(RuntimeError):
    """Result extraction requested for a solve without a usable solution."""
    pass
