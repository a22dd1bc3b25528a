import numpy as np
import pytest

from voice_gate.backend.component.preroll import PrerollBuffer
from voice_gate.backend.component.vad_gate import DynamicThreshold, clamp_elevated
from voice_gate.backend.runtime.config import ThresholdSettings
from voice_gate.utils import audio


def test_estimate_volume_mean_absolute():
    frame = np.array([100, -100, 300, -300], dtype="<i2").tobytes()
    assert audio.estimate_volume(frame) == pytest.approx(200.0)


def test_estimate_volume_handles_min_int16():
    frame = np.array([-32768, -32768], dtype="<i2").tobytes()
    assert audio.estimate_volume(frame) == pytest.approx(32768.0)


def test_estimate_volume_empty_frame():
    assert audio.estimate_volume(b"") == 0.0


def test_is_valid_pcm16():
    assert audio.is_valid_pcm16(b"\x00\x00")
    assert audio.is_valid_pcm16(bytearray(4))
    assert not audio.is_valid_pcm16(b"\x00")
    assert not audio.is_valid_pcm16([0, 0])


def test_frame_duration_seconds():
    assert audio.frame_duration_seconds(3840, 48000, channels=2) == pytest.approx(0.02)
    assert audio.frame_duration_seconds(3840, 0) == 0.0


@pytest.mark.parametrize(
    "average, expected",
    [(100.0, 200.0), (1000.0, 500.0), (4000.0, 800.0)],
)
def test_clamp_elevated_to_nearer_bound(average, expected):
    assert clamp_elevated(average, ThresholdSettings()) == pytest.approx(expected)


def test_threshold_speech_is_strictly_above():
    threshold = DynamicThreshold(ThresholdSettings(base=150.0))
    assert not threshold.is_speech(150.0)
    assert threshold.is_speech(150.5)


def test_finality_recomputes_and_resets_stats():
    threshold = DynamicThreshold(ThresholdSettings())
    for volume in (400.0, 600.0, 1400.0):
        threshold.observe_speech(volume)

    update = threshold.on_finality(now=12.0)

    assert update.average_volume == pytest.approx(800.0)
    assert update.max_volume == pytest.approx(1400.0)
    assert update.samples == 3
    assert threshold.threshold == pytest.approx(400.0)
    assert threshold.elevated_at == 12.0
    assert threshold.volume_count == 0


def test_finality_without_speech_keeps_elevated_threshold():
    threshold = DynamicThreshold(ThresholdSettings())
    threshold.observe_speech(1000.0)
    threshold.on_finality(now=1.0)

    update = threshold.on_finality(now=2.0)

    assert not update.elevated
    assert update.samples == 0
    assert threshold.threshold == pytest.approx(500.0)
    assert threshold.elevated_at == 1.0


def test_first_finality_without_speech_stays_at_base():
    threshold = DynamicThreshold(ThresholdSettings())

    update = threshold.on_finality(now=1.0)

    assert not update.elevated
    assert threshold.threshold == 150.0
    assert threshold.elevated_at is None


def test_preroll_evicts_oldest():
    buffer = PrerollBuffer(2)
    for frame in (b"a", b"b", b"c"):
        buffer.append(frame)

    assert buffer.drain() == [b"b", b"c"]
    assert len(buffer) == 0


def test_preroll_zero_capacity_disables_buffering():
    buffer = PrerollBuffer(0)
    buffer.append(b"a")
    assert buffer.drain() == []
