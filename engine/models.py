# engine/models.py
from enum import Enum
from typing import Optional, Dict, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Timestamps above this are taken to be in milliseconds
MILLISECOND_TIMESTAMP_THRESHOLD = 1e11


class Algorithm(str, Enum):
    SHA256D = "sha256d"
    SCRYPT = "scrypt"
    SKEIN = "skein"
    QUBIT = "qubit"
    ODOCRYPT = "odocrypt"

    @property
    def display_name(self) -> str:
        return ALGORITHM_DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: str) -> "Algorithm":
        """Resolve a wire algorithm label, case-insensitively and with known aliases"""
        key = str(value).strip().lower()
        key = ALGORITHM_ALIASES.get(key, key)
        return cls(key)


ALGORITHM_DISPLAY_NAMES = {
    Algorithm.SHA256D: "SHA256D",
    Algorithm.SCRYPT: "Scrypt",
    Algorithm.SKEIN: "Skein",
    Algorithm.QUBIT: "Qubit",
    Algorithm.ODOCRYPT: "Odocrypt",
}

ALGORITHM_ALIASES = {
    "odo": "odocrypt",
    "sha256": "sha256d",
    "sha-256d": "sha256d",
}


class FeedStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    USING_FALLBACK = "usingFallback"
    DISCONNECTED = "disconnected"


class DataFreshness(str, Enum):
    PENDING = "pending"
    LIVE = "live"
    STALE = "stale"
    FALLBACK = "fallback"


class BlockRecord(BaseModel):
    """A mined block as received from the feed; immutable once parsed."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    height: int = Field(ge=0)
    hash: str = Field(min_length=1)
    timestamp: float = Field(allow_inf_nan=False, validation_alias=AliasChoices("timestamp", "time", "blockTime"))
    algorithm: Algorithm = Field(validation_alias=AliasChoices("algorithm", "algo"))
    difficulty: float = Field(ge=0, allow_inf_nan=False)
    miner_address: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("miner_address", "minedTo", "minerAddress", "miner", "address"),
    )
    pool_identifier: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("pool_identifier", "poolIdentifier", "pool"),
    )
    taproot_signaling: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("taproot_signaling", "taprootSignaling"),
    )
    tx_count: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("tx_count", "txCount"),
    )

    @field_validator("algorithm", mode="before")
    @classmethod
    def normalize_algorithm(cls, value):
        if isinstance(value, Algorithm):
            return value
        if not isinstance(value, str):
            raise ValueError("algorithm must be a string")
        try:
            return Algorithm.parse(value)
        except ValueError:
            raise ValueError(f"unknown algorithm {value!r}") from None

    @field_validator("timestamp", mode="after")
    @classmethod
    def normalize_timestamp(cls, value: float) -> float:
        if value > MILLISECOND_TIMESTAMP_THRESHOLD:
            return value / 1000.0
        return value

    @field_validator("miner_address", "pool_identifier", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class AlgorithmStats(BaseModel):
    """Per-algorithm estimates over the time horizon. ``None`` means unavailable."""
    model_config = ConfigDict(frozen=True)

    algorithm: Algorithm
    block_count: int = 0
    hashrate: Optional[float] = None
    avg_difficulty: Optional[float] = None
    avg_block_interval: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.block_count > 0


class NetworkStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    block_count: int = 0
    total_hashrate: Optional[float] = None
    avg_block_interval: Optional[float] = None


class AlgorithmShare(BaseModel):
    model_config = ConfigDict(frozen=True)

    algorithm: Algorithm
    count: int
    percentage: Optional[float] = None


class MultiBlockMiner(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank: int
    address: str
    count: int
    latest_height: int
    pool_label: Optional[str] = None


class SingleBlockMiner(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank: int
    address: str
    height: int
    pool_label: Optional[str] = None


class SignalingShare(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int = 0
    total: int = 0
    percentage: Optional[float] = None


class DistributionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_blocks: int = 0
    by_algorithm: Dict[Algorithm, AlgorithmShare] = Field(default_factory=dict)
    multi_block_miners: Tuple[MultiBlockMiner, ...] = ()
    single_block_miners: Tuple[SingleBlockMiner, ...] = ()
    single_block_miner_total: int = 0
    unattributed_blocks: int = 0
    taproot_signaling: SignalingShare = Field(default_factory=SignalingShare)


class DifficultyPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    height: int
    timestamp: float
    difficulty: float


class Diagnostics(BaseModel):
    model_config = ConfigDict(frozen=True)

    snapshots_applied: int = 0
    increments_applied: int = 0
    duplicates_rejected: int = 0
    stale_rejected: int = 0
    protocol_errors: int = 0
    malformed_records: int = 0


class EngineState(BaseModel):
    """Immutable view of everything the engine publishes."""
    model_config = ConfigDict(frozen=True)

    window: Tuple[BlockRecord, ...] = ()
    stats: Dict[Algorithm, AlgorithmStats] = Field(default_factory=dict)
    network: NetworkStats = Field(default_factory=NetworkStats)
    difficulties: Dict[Algorithm, Tuple[DifficultyPoint, ...]] = Field(default_factory=dict)
    distribution: DistributionSnapshot = Field(default_factory=DistributionSnapshot)
    status: FeedStatus = FeedStatus.CONNECTING
    using_fallback_data: bool = False
    freshness: DataFreshness = DataFreshness.PENDING
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    last_update: Optional[float] = None
    horizon_seconds: float = 3600.0
