# routes/metrics/models.py
from pydantic import BaseModel
from typing import Optional, List

class FeedStatusInfo(BaseModel):
    status: str
    freshness: str
    usingFallbackData: bool
    lastUpdate: Optional[float] = None
    windowSize: int

class AlgorithmHashrate(BaseModel):
    algorithm: str
    displayName: str
    blockCount: int
    hashrate: Optional[float] = None
    hashrateDisplay: str
    avgDifficulty: Optional[float] = None
    avgBlockTime: Optional[float] = None
    avgBlockTimeDisplay: str

class NetworkHashrate(BaseModel):
    blockCount: int
    totalHashrate: Optional[float] = None
    totalHashrateDisplay: str
    avgBlockTime: Optional[float] = None
    avgBlockTimeDisplay: str

class HashrateResponse(BaseModel):
    feed: FeedStatusInfo
    horizonSeconds: float
    algorithms: List[AlgorithmHashrate]
    network: NetworkHashrate

class Slice(BaseModel):
    label: str
    count: int
    percentage: Optional[float] = None

class AlgorithmShareInfo(BaseModel):
    algorithm: str
    displayName: str
    count: int
    percentage: Optional[float] = None

class DistributionResponse(BaseModel):
    feed: FeedStatusInfo
    totalBlocks: int
    algorithms: List[AlgorithmShareInfo]
    slices: List[Slice]
    taprootSignaling: Slice

class MultiBlockMinerInfo(BaseModel):
    rank: int
    address: str
    count: int
    latestHeight: int
    poolIdentifier: Optional[str] = None

class SingleBlockMinerInfo(BaseModel):
    rank: int
    address: str
    height: int
    poolIdentifier: Optional[str] = None

class MinersResponse(BaseModel):
    feed: FeedStatusInfo
    totalBlocks: int
    multiBlockMiners: List[MultiBlockMinerInfo]
    singleBlockMiners: List[SingleBlockMinerInfo]
    singleBlockMinerTotal: int
    unattributedBlocks: int
    slices: List[Slice]

class Block(BaseModel):
    height: int
    hash: str
    timestamp: float
    algo: str
    difficulty: float
    minedTo: Optional[str] = None
    poolIdentifier: Optional[str] = None
    taprootSignaling: Optional[bool] = None
    txCount: Optional[int] = None
    synthetic: bool = False

class BlocksPage(BaseModel):
    feed: FeedStatusInfo
    page: int
    perPage: int
    totalPages: int
    blocks: List[Block]
