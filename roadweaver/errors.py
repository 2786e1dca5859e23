# errors.py


class RoadweaverError(Exception):
    """Base class for engine errors."""


class ConfigurationError(RoadweaverError, ValueError):
    """Malformed raster, settlement or parameter input. Not retryable."""


class LoadError(RoadweaverError):
    """Raster or settlement data could not be read or fetched."""
