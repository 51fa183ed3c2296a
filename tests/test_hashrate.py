import pytest

from engine.errors import ConfigurationError
from engine.hashrate import (
    HASHES_PER_DIFFICULTY, HashrateConstants, compute_algorithm_stats,
    compute_network_stats, difficulty_series
)
from engine.models import Algorithm


def test_constants_derive_expected_blocks():
    constants = HashrateConstants()
    assert constants.combined_target_interval == 75
    assert constants.expected_blocks(3600) == 48


def test_three_blocks_of_one_algorithm(make_block, now):
    records = [
        make_block(height, algorithm=Algorithm.SCRYPT, difficulty=10_000_000, timestamp=now - height * 60)
        for height in (1, 2, 3)
    ]

    stats = compute_algorithm_stats(records, 3600, now=now)

    scrypt = stats[Algorithm.SCRYPT]
    # (3 / 48) * 1e7 * 2**32 / 75
    reference = 35791394133333.33
    assert scrypt.block_count == 3
    assert scrypt.avg_block_interval == 1200
    assert scrypt.avg_difficulty == 10_000_000
    assert scrypt.hashrate == pytest.approx(reference, rel=1e-6)
    assert scrypt.hashrate == pytest.approx((3 / 48) * 10_000_000 * HASHES_PER_DIFFICULTY / 75, rel=1e-9)


def test_algorithms_without_blocks_are_unavailable(make_block, now):
    stats = compute_algorithm_stats([make_block(1, algorithm=Algorithm.SKEIN)], 3600, now=now)

    assert set(stats) == set(Algorithm)
    for algorithm in (Algorithm.SHA256D, Algorithm.SCRYPT, Algorithm.QUBIT, Algorithm.ODOCRYPT):
        item = stats[algorithm]
        assert not item.available
        assert item.block_count == 0
        assert item.hashrate is None
        assert item.avg_difficulty is None
        assert item.avg_block_interval is None
    assert stats[Algorithm.SKEIN].available


def test_blocks_outside_horizon_are_ignored(make_block, now):
    records = [
        make_block(2, difficulty=4.0, timestamp=now - 10),
        make_block(1, difficulty=100.0, timestamp=now - 7200),
    ]

    stats = compute_algorithm_stats(records, 3600, now=now)

    assert stats[Algorithm.SHA256D].block_count == 1
    assert stats[Algorithm.SHA256D].avg_difficulty == 4.0


def test_empty_view_yields_no_estimates(now):
    stats = compute_algorithm_stats([], 3600, now=now)
    assert all(item.hashrate is None for item in stats.values())

    network = compute_network_stats(stats, 3600)
    assert network.block_count == 0
    assert network.total_hashrate is None
    assert network.avg_block_interval is None


def test_horizon_must_be_positive():
    with pytest.raises(ConfigurationError):
        compute_algorithm_stats([], 0)


def test_network_totals(make_block, now):
    records = [
        make_block(1, algorithm=Algorithm.SHA256D, difficulty=2.0),
        make_block(2, algorithm=Algorithm.QUBIT, difficulty=6.0),
    ]
    stats = compute_algorithm_stats(records, 3600, now=now)

    network = compute_network_stats(stats, 3600)

    assert network.block_count == 2
    assert network.avg_block_interval == 1800
    assert network.total_hashrate == pytest.approx(
        stats[Algorithm.SHA256D].hashrate + stats[Algorithm.QUBIT].hashrate
    )


def test_difficulty_series_is_oldest_first(make_block):
    records = [
        make_block(3, algorithm=Algorithm.ODOCRYPT, difficulty=30.0),
        make_block(2, algorithm=Algorithm.SCRYPT, difficulty=20.0),
        make_block(1, algorithm=Algorithm.ODOCRYPT, difficulty=10.0),
    ]

    series = difficulty_series(records)

    assert [point.height for point in series[Algorithm.ODOCRYPT]] == [1, 3]
    assert [point.difficulty for point in series[Algorithm.ODOCRYPT]] == [10.0, 30.0]
    assert len(series[Algorithm.SCRYPT]) == 1
    assert series[Algorithm.SKEIN] == ()
