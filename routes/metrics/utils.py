# routes/metrics/utils.py
from typing import Dict, Any, Optional
from engine.models import AlgorithmStats, BlockRecord, EngineState, NetworkStats
from engine.fallback import is_fallback_record

HASHRATE_UNITS = ['H/s', 'KH/s', 'MH/s', 'GH/s', 'TH/s', 'PH/s', 'EH/s']

def format_hashrate(hashrate: Optional[float]) -> str:
    """Human readable hashrate, e.g. '35.79 TH/s'"""
    if hashrate is None:
        return "N/A"
    index = 0
    while hashrate >= 1000 and index < len(HASHRATE_UNITS) - 1:
        hashrate /= 1000
        index += 1
    return f"{hashrate:.2f} {HASHRATE_UNITS[index]}"

def format_block_time(seconds: Optional[float]) -> str:
    """Block interval as 'M min S s'"""
    if seconds is None:
        return "N/A"
    minutes = int(seconds // 60)
    remainder = seconds - minutes * 60
    return f"{minutes} min {remainder:.0f} s"

def format_status(state: EngineState) -> Dict[str, Any]:
    """Status block shared by every metrics response"""
    return {
        "status": state.status.value,
        "freshness": state.freshness.value,
        "usingFallbackData": state.using_fallback_data,
        "lastUpdate": state.last_update,
        "windowSize": len(state.window),
    }

def format_algorithm_stats(stats: AlgorithmStats) -> Dict[str, Any]:
    return {
        "algorithm": stats.algorithm.value,
        "displayName": stats.algorithm.display_name,
        "blockCount": stats.block_count,
        "hashrate": stats.hashrate,
        "hashrateDisplay": format_hashrate(stats.hashrate),
        "avgDifficulty": stats.avg_difficulty,
        "avgBlockTime": stats.avg_block_interval,
        "avgBlockTimeDisplay": format_block_time(stats.avg_block_interval),
    }

def format_network_stats(network: NetworkStats) -> Dict[str, Any]:
    return {
        "blockCount": network.block_count,
        "totalHashrate": network.total_hashrate,
        "totalHashrateDisplay": format_hashrate(network.total_hashrate),
        "avgBlockTime": network.avg_block_interval,
        "avgBlockTimeDisplay": format_block_time(network.avg_block_interval),
    }

def format_block_data(record: BlockRecord) -> Dict[str, Any]:
    """Format block data for API response"""
    return {
        "height": record.height,
        "hash": record.hash,
        "timestamp": record.timestamp,
        "algo": record.algorithm.value,
        "difficulty": record.difficulty,
        "minedTo": record.miner_address,
        "poolIdentifier": record.pool_identifier,
        "taprootSignaling": record.taproot_signaling,
        "txCount": record.tx_count,
        "synthetic": is_fallback_record(record),
    }
