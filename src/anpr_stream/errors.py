# errors.py
# Exception types shared across the pipeline


class AnprError(Exception):
    """Base class for pipeline errors."""


class ConfigError(AnprError):
    """Missing or malformed configuration. Fatal at startup."""


class ModelLoadError(ConfigError):
    """Plate detector model could not be loaded."""


class StreamError(AnprError):
    """Video stream could not be opened."""


class LogStoreError(AnprError):
    """Log store could not be read or written (locked, permissions, IO)."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
