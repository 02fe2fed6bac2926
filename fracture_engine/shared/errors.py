# errors.py


class FractureEngineError(Exception):
    """Base class for engine errors"""


class InvalidSampleError(FractureEngineError, ValueError):
    """Raised when a sample is rejected at ingest (non-finite value or out-of-order timestamp)"""

    def __init__(self, source_id: str, value, timestamp, reason: str):
        self.source_id = source_id
        self.value = value
        self.timestamp = timestamp
        self.reason = reason
        super().__init__(f"Rejected sample for '{source_id}' (value={value}, timestamp={timestamp}): {reason}")


class ConfigurationError(FractureEngineError, ValueError):
    """Raised when a configuration or adjustment fails validation"""
