# routes/metrics/routes.py
from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, Optional
from config import Settings
from dependencies import get_engine, get_feed, get_settings
from engine.distribution import algorithm_slices, miner_slices
from engine.models import Algorithm
from engine.pipeline import MetricsEngine
from feed_manager import ConnectionManager

from .models import (
    HashrateResponse, DistributionResponse, MinersResponse, BlocksPage
)
from .utils import (
    format_status, format_algorithm_stats, format_network_stats, format_block_data
)

router = APIRouter()

@router.get("/status")
async def get_feed_status(
    engine: MetricsEngine = Depends(get_engine),
    feed: Optional[ConnectionManager] = Depends(get_feed)
) -> Dict[str, Any]:
    """Feed connection state, data freshness and diagnostic counters"""
    state = engine.state()
    response = format_status(state)
    response["connectionState"] = feed.state.value if feed else None
    response["endpoint"] = feed.endpoint if feed else None
    response["lastMessageTime"] = feed.last_message_time if feed else None
    response["diagnostics"] = state.diagnostics.model_dump()
    return response

@router.get("/hashrate", response_model=HashrateResponse)
async def get_hashrate(engine: MetricsEngine = Depends(get_engine)):
    """Per-algorithm hashrate, average difficulty and block time over the horizon"""
    state = engine.state()
    return {
        "feed": format_status(state),
        "horizonSeconds": state.horizon_seconds,
        "algorithms": [format_algorithm_stats(state.stats[algorithm]) for algorithm in Algorithm],
        "network": format_network_stats(state.network),
    }

@router.get("/difficulties")
async def get_difficulties(engine: MetricsEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Difficulty history per algorithm across the window, oldest first"""
    state = engine.state()
    return {
        "feed": format_status(state),
        "difficulties": {
            algorithm.value: [point.model_dump() for point in state.difficulties.get(algorithm, ())]
            for algorithm in Algorithm
        },
    }

@router.get("/distribution", response_model=DistributionResponse)
async def get_distribution(
    engine: MetricsEngine = Depends(get_engine),
    config: Settings = Depends(get_settings),
    collapse_below: Optional[float] = Query(None, ge=0, le=100)
):
    """Blocks per algorithm; ``slices`` folds small shares into 'Other'"""
    if collapse_below is None:
        collapse_below = config.OTHER_THRESHOLD_PERCENT
    state = engine.state()
    distribution = state.distribution
    taproot = distribution.taproot_signaling
    return {
        "feed": format_status(state),
        "totalBlocks": distribution.total_blocks,
        "algorithms": [
            {
                "algorithm": share.algorithm.value,
                "displayName": share.algorithm.display_name,
                "count": share.count,
                "percentage": share.percentage,
            }
            for share in distribution.by_algorithm.values()
        ],
        "slices": [item._asdict() for item in algorithm_slices(distribution, collapse_below)],
        "taprootSignaling": {"label": "taproot", "count": taproot.count, "percentage": taproot.percentage},
    }

@router.get("/miners", response_model=MinersResponse)
async def get_miners(
    engine: MetricsEngine = Depends(get_engine),
    config: Settings = Depends(get_settings),
    collapse_below: Optional[float] = Query(None, ge=0, le=100)
):
    """Addresses ranked by blocks mined in the window"""
    if collapse_below is None:
        collapse_below = config.OTHER_THRESHOLD_PERCENT
    state = engine.state()
    distribution = state.distribution
    return {
        "feed": format_status(state),
        "totalBlocks": distribution.total_blocks,
        "multiBlockMiners": [
            {
                "rank": miner.rank,
                "address": miner.address,
                "count": miner.count,
                "latestHeight": miner.latest_height,
                "poolIdentifier": miner.pool_label,
            }
            for miner in distribution.multi_block_miners
        ],
        "singleBlockMiners": [
            {
                "rank": miner.rank,
                "address": miner.address,
                "height": miner.height,
                "poolIdentifier": miner.pool_label,
            }
            for miner in distribution.single_block_miners
        ],
        "singleBlockMinerTotal": distribution.single_block_miner_total,
        "unattributedBlocks": distribution.unattributed_blocks,
        "slices": [item._asdict() for item in miner_slices(distribution, collapse_below)],
    }

@router.get("/blocks", response_model=BlocksPage)
async def get_blocks(
    engine: MetricsEngine = Depends(get_engine),
    config: Settings = Depends(get_settings),
    page: int = Query(0, ge=0),
    per_page: Optional[int] = Query(None, ge=1, le=250)
):
    """Latest blocks, newest first"""
    if per_page is None:
        per_page = config.BLOCKS_PER_PAGE
    state = engine.state()
    total = len(state.window)
    start = page * per_page
    return {
        "feed": format_status(state),
        "page": page,
        "perPage": per_page,
        "totalPages": (total + per_page - 1) // per_page,
        "blocks": [format_block_data(record) for record in state.window[start:start + per_page]],
    }
