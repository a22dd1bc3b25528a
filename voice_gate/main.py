import argparse
import itertools
import time
from pathlib import Path
from typing import Iterator, Tuple

import numpy as np
import soundfile as sf

from voice_gate.backend.runtime.runtime import GateRuntime
from voice_gate.config import DEFAULT_CONFIG_PATH, GateConfig, load_config
from voice_gate.utils.logger import LOGGER, configure_logging

FRAME_MS = 20
TAIL_SEC = 2.0  # trailing silence so the last utterance can flush


def load_audio(filepath: str) -> Tuple[np.ndarray, int]:
    """Read an audio file as int16 samples shaped (frames, channels)."""
    audio, sr = sf.read(filepath, dtype="int16", always_2d=True)
    return audio, sr


def iter_frames(
    audio: np.ndarray, sr: int, frame_ms: int, realtime: bool = False
) -> Iterator[bytes]:
    """Split interleaved PCM16 audio into fixed-duration frames."""
    samples_per_frame = max(int(sr * (frame_ms / 1000)), 1)
    sleep_time = frame_ms / 1000.0
    for start in range(0, len(audio), samples_per_frame):
        yield np.ascontiguousarray(audio[start : start + samples_per_frame]).tobytes()
        if realtime:
            time.sleep(sleep_time)


def stream_file(
    runtime: GateRuntime,
    filepath: str,
    speaker_id: str,
    display_name: str,
    frame_ms: int = FRAME_MS,
    realtime: bool = False,
    tail_sec: float = TAIL_SEC,
) -> None:
    audio, sr = load_audio(filepath)
    tail = np.zeros((int(sr * max(0.0, tail_sec)), audio.shape[1]), dtype=np.int16)
    LOGGER.info(
        "Streaming %s (%d Hz, %d channel(s), %.1fs) as %s",
        filepath,
        sr,
        audio.shape[1],
        len(audio) / float(sr),
        display_name,
    )
    frames = itertools.chain(
        iter_frames(audio, sr, frame_ms, realtime),
        iter_frames(tail, sr, frame_ms, realtime),
    )
    runtime.pump_audio(speaker_id, display_name, frames)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Gate a recorded speaker through the streaming transcription backend"
    )
    parser.add_argument("audio", help="Audio file to stream (any format soundfile reads)")
    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to YAML config (default search: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--speaker-id", default="file", help="Speaker id for the session")
    parser.add_argument(
        "--display-name", default=None, help="Name shown with delivered transcripts"
    )
    parser.add_argument(
        "--frame-ms", type=int, default=FRAME_MS, help="Frame duration in milliseconds"
    )
    parser.add_argument(
        "--tail-sec",
        type=float,
        default=TAIL_SEC,
        help="Seconds of silence appended after the file",
    )
    parser.add_argument(
        "--no-realtime",
        action="store_true",
        help="Send audio as fast as possible (disable per-frame sleep)",
    )
    parser.add_argument("--backend-url", default=None, help="Overrides backend.url")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. TRACE, DEBUG, INFO); overrides config",
    )
    parser.add_argument(
        "--log-file", default=None, help="Optional log file path; overrides config"
    )
    parser.add_argument(
        "--transcript-log-file",
        default=None,
        help="File receiving delivered transcripts; overrides config",
    )
    return parser.parse_args()


def configure_from_args(args: argparse.Namespace) -> GateConfig:
    config_path = Path(args.config).expanduser() if args.config else DEFAULT_CONFIG_PATH
    config = load_config(config_path)

    if args.backend_url is not None:
        config.backend_url = args.backend_url
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_file is not None:
        config.log_file = args.log_file
    if args.transcript_log_file is not None:
        config.transcript_log_file = args.transcript_log_file

    configure_logging(config.log_level, config.log_file, config.transcript_log_file)
    if config_path.exists():
        LOGGER.info("Loaded gate config from %s", config_path)
    else:
        LOGGER.info(
            "Gate config file not found at %s; using defaults/CLI overrides",
            config_path,
        )
    return config


def main() -> None:
    args = parse_args()
    config = configure_from_args(args)
    info = sf.info(args.audio)
    if info.samplerate != config.sample_rate or info.channels != config.channels:
        LOGGER.warning(
            "Audio file is %d Hz/%d ch but config expects %d Hz/%d ch; "
            "the backend URL must match the file",
            info.samplerate,
            info.channels,
            config.sample_rate,
            config.channels,
        )
    runtime = GateRuntime(config)
    try:
        stream_file(
            runtime,
            args.audio,
            args.speaker_id,
            args.display_name or args.speaker_id,
            frame_ms=args.frame_ms,
            realtime=not args.no_realtime,
            tail_sec=args.tail_sec,
        )
    finally:
        runtime.shutdown()
        LOGGER.info("Final metrics: %s", runtime.metrics.render())


if __name__ == "__main__":
    main()
