"""
Shared fixtures for the block-wave tests
"""

import pytest

from engine.models import Algorithm, BlockRecord

# Fixed wall clock so horizon filtering is deterministic
NOW = 1_700_000_000.0


def build_block(
    height,
    algorithm=Algorithm.SHA256D,
    timestamp=None,
    difficulty=1.0,
    miner=None,
    pool=None,
    block_hash=None,
    taproot=None,
):
    return BlockRecord(
        height=height,
        hash=block_hash or f"hash-{height}",
        timestamp=NOW if timestamp is None else timestamp,
        algorithm=algorithm,
        difficulty=difficulty,
        miner_address=miner,
        pool_identifier=pool,
        taproot_signaling=taproot,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_block():
    """Factory for block records stamped at the fixed test clock"""
    return build_block


@pytest.fixture
def round_robin_blocks():
    """240 blocks cycling through every algorithm, newest first"""
    algorithms = list(Algorithm)
    return [
        build_block(height, algorithm=algorithms[height % len(algorithms)], timestamp=NOW - (240 - height))
        for height in range(240, 0, -1)
    ]
