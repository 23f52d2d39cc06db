"""Tests for the consecutive-failure tracker."""

import pytest

from usdc_flow_tracker.chain.failures import FailureKey, FailureTracker
from usdc_flow_tracker.chain.models import Network


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def key() -> FailureKey:
    return FailureKey.of(Network.POLYGON, "0xABCDEF")


class TestFailureKey:
    def test_address_lowercased(self) -> None:
        assert FailureKey.of(Network.POLYGON, "0xAbC") == FailureKey(Network.POLYGON, "0xabc")

    def test_base58_address_keeps_case(self) -> None:
        upper = FailureKey.of(Network.SOLANA, "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU")
        lower = FailureKey.of(Network.SOLANA, "7xkxtg2cw87d97txjsdpbd5jbkhetqa83tzrujosgasu")
        assert upper.address == "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
        assert upper != lower
        assert FailureKey.of(Network.TRON, " TNPeeaaFB7K9cmo4uQpcU32zGK8G1NYqeL ").address == (
            "TNPeeaaFB7K9cmo4uQpcU32zGK8G1NYqeL"
        )

    def test_networks_are_distinct(self) -> None:
        assert FailureKey.of(Network.POLYGON, "a") != FailureKey.of(Network.SOLANA, "a")


class TestFailureTracker:
    def test_record_failure_increments(self, key: FailureKey) -> None:
        tracker = FailureTracker(max_failures=3)
        assert tracker.record_failure(key) == 1
        assert tracker.record_failure(key) == 2
        assert tracker.failure_count(key) == 2

    def test_success_resets(self, key: FailureKey) -> None:
        tracker = FailureTracker(max_failures=3)
        tracker.record_failure(key)
        tracker.record_failure(key)
        tracker.record_success(key)
        assert tracker.failure_count(key) == 0
        assert len(tracker) == 0

    def test_short_circuit_only_at_threshold(self, key: FailureKey, clock: FakeClock) -> None:
        tracker = FailureTracker(max_failures=3, clock=clock)
        tracker.record_failure(key)
        tracker.record_failure(key)
        assert tracker.should_short_circuit(key) is False
        tracker.record_failure(key)
        assert tracker.should_short_circuit(key) is True

    def test_recovery_probe_after_interval(self, key: FailureKey, clock: FakeClock) -> None:
        tracker = FailureTracker(max_failures=3, recovery_seconds=600, clock=clock)
        for _ in range(3):
            tracker.record_failure(key)

        clock.now += 599
        assert tracker.should_short_circuit(key) is True

        clock.now += 1
        assert tracker.should_short_circuit(key) is False
        # The probe restarts the interval
        assert tracker.should_short_circuit(key) is True

    def test_invalid_threshold(self) -> None:
        with pytest.raises(ValueError):
            FailureTracker(max_failures=0)
