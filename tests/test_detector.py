import pytest

from bumplog.config.settings import DetectionSettings
from bumplog.detection.detector import SpeedBumpDetector, is_large_drop, is_near_stop, to_kmh
from bumplog.domain.models import PositionSample

from conftest import sample


def test_to_kmh_treats_missing_speed_as_zero():
    assert to_kmh(None) == 0.0
    assert to_kmh(10) == pytest.approx(36.0)


@pytest.mark.parametrize(
    "previous, current, expected",
    [
        (30.0, 20.0, False),  # drop exactly 10
        (30.0, 19.99, True),  # drop 10.01
        (15.0, 0.0, False),  # previous not above 15
        (25.0, 14.0, True),
    ],
)
def test_large_drop_predicate(previous, current, expected):
    assert is_large_drop(previous, current) is expected


@pytest.mark.parametrize(
    "previous, current, expected",
    [
        (16.0, 8.0, False),  # speed exactly 8
        (16.0, 7.99, True),
        (15.0, 1.0, False),
        (40.0, 0.0, True),
    ],
)
def test_near_stop_predicate(previous, current, expected):
    assert is_near_stop(previous, current) is expected


def test_predicates_fire_independently():
    # 16 -> 7.99: a near stop but only an 8.01 drop.
    assert is_near_stop(16.0, 7.99) and not is_large_drop(16.0, 7.99)
    # 50 -> 30: a large drop but nowhere near a stop.
    assert is_large_drop(50.0, 30.0) and not is_near_stop(50.0, 30.0)


def test_no_detection_when_previous_speed_at_or_below_hysteresis():
    detector = SpeedBumpDetector()
    for kmh in [0, 5, 14.99, 0, 14.9, 0, 10, 0]:
        assert detector.process(sample(kmh, ts=1)) is None


def test_detection_carries_sample_fields_and_reasons():
    detector = SpeedBumpDetector()
    assert detector.process(sample(40, ts=1_000)) is None

    s = PositionSample(latitude=48.1, longitude=11.5, timestamp_ms=2_000, speed_mps=1.0, accuracy_m=7.5)
    detection = detector.process(s)

    assert detection is not None
    assert detection.latitude == 48.1
    assert detection.longitude == 11.5
    assert detection.timestamp_ms == 2_000
    assert detection.accuracy_m == 7.5
    assert detection.speed_kmh == pytest.approx(3.6)
    assert detection.previous_speed_kmh == pytest.approx(40)
    assert detection.large_drop and detection.near_stop


def test_previous_speed_updates_even_after_trigger():
    detector = SpeedBumpDetector()
    detector.process(sample(30, ts=1))
    assert detector.process(sample(5, ts=2)) is not None
    assert detector.previous_speed_kmh == pytest.approx(5)
    # The low sample is now the baseline, so an immediate second drop does not fire.
    assert detector.process(sample(0, ts=3)) is None


def test_reset_clears_baseline():
    detector = SpeedBumpDetector()
    detector.process(sample(50, ts=1))
    detector.reset()
    assert detector.previous_speed_kmh == 0.0
    assert detector.process(sample(0, ts=2)) is None


def test_rolling_window_compares_against_mean():
    detector = SpeedBumpDetector(DetectionSettings(window_size=3))
    detector.process(sample(30, ts=1))
    detector.process(sample(30, ts=2))
    # A single jittery dip only moves the mean to 22.
    assert detector.process(sample(6, ts=3)) is not None
    assert detector.previous_speed_kmh == pytest.approx(22)
    assert detector.process(sample(30, ts=4)) is None


def test_thresholds_come_from_settings():
    detector = SpeedBumpDetector(
        DetectionSettings(min_previous_speed_kmh=30, drop_threshold_kmh=5, near_stop_speed_kmh=2)
    )
    detector.process(sample(25, ts=1))
    assert detector.process(sample(10, ts=2)) is None
    detector.process(sample(40, ts=3))
    detection = detector.process(sample(34, ts=4))
    assert detection is not None and detection.large_drop and not detection.near_stop


@pytest.mark.parametrize("previous", [0.0, 7.5, 15.0])
@pytest.mark.parametrize("current", [0.0, 4.0, 15.0, 120.0])
def test_hysteresis_blocks_both_rules(previous, current):
    assert not is_large_drop(previous, current)
    assert not is_near_stop(previous, current)
