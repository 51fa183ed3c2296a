# engine/errors.py
from typing import Optional


class BlockWaveError(Exception):
    """Base class for all engine errors"""


class ConfigurationError(BlockWaveError, ValueError):
    """Raised at construction time for unusable settings"""


class FeedConnectionError(BlockWaveError):
    """Transport-level failure of the block feed"""


class ProtocolError(BlockWaveError):
    """Malformed or unparseable inbound message"""

    def __init__(self, detail: str, payload: Optional[object] = None):
        super().__init__(detail)
        self.detail = detail
        self.payload = payload


class DataIntegrityError(BlockWaveError):
    """A record that would break the window invariants"""

    def __init__(self, detail: str, result):
        super().__init__(detail)
        self.detail = detail
        self.result = result
