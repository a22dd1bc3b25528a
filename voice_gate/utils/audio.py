import numpy as np

BYTES_PER_SAMPLE = 2  # PCM16


def is_valid_pcm16(frame) -> bool:
    """Return True when frame is a bytes-like buffer of whole int16 samples."""
    if not isinstance(frame, (bytes, bytearray, memoryview)):
        return False
    return len(frame) % BYTES_PER_SAMPLE == 0


def pcm16_samples(frame: bytes) -> np.ndarray:
    """PCM16 bytes → int16 numpy array (interleaved channels kept as-is)."""
    return np.frombuffer(frame, dtype="<i2")


def estimate_volume(frame: bytes) -> float:
    """Mean absolute sample magnitude of an interleaved PCM16 frame."""
    if not frame:
        return 0.0
    samples = pcm16_samples(frame)
    if samples.size == 0:
        return 0.0
    # Widen before abs() so -32768 does not overflow.
    return float(np.mean(np.abs(samples.astype(np.int32))))


def frame_duration_seconds(byte_length: int, sample_rate: int, channels: int = 1) -> float:
    """Return frame duration given PCM16 byte length, sample rate and channels."""
    if sample_rate <= 0 or channels <= 0:
        return 0.0
    samples = byte_length / BYTES_PER_SAMPLE / channels
    return samples / float(sample_rate)


def pcm16_frame(value: int, samples: int) -> bytes:
    """Build a constant-amplitude PCM16 frame (tests and tooling)."""
    return np.full(samples, value, dtype="<i2").tobytes()
