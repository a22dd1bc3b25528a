import logging

import pytest

from voice_gate.backend.application.speaker_session import (
    SpeakerIdentity,
    SpeakerSession,
    SpeakerState,
)
from voice_gate.backend.runtime.config import SessionSettings
from voice_gate.backend.runtime.metrics import Metrics
from voice_gate.utils.audio import pcm16_frame

FRAME_SEC = 0.02
LOUD = pcm16_frame(1000, 960)
QUIET = pcm16_frame(10, 960)


@pytest.fixture
def metrics():
    return Metrics()


@pytest.fixture
def make_session(backend, deliver, scheduler, clock, metrics):
    def _make(settings: SessionSettings | None = None) -> SpeakerSession:
        session = SpeakerSession(
            SpeakerIdentity("spk-1", "Alice"),
            settings or SessionSettings(),
            backend,
            deliver,
            scheduler=scheduler,
            time_fn=clock,
            metrics=metrics,
        )
        session.start()
        return session

    return _make


def _feed(session, scheduler, frame, count):
    for _ in range(count):
        session.handle_frame(frame)
        scheduler.advance(FRAME_SEC)


def test_below_threshold_frames_are_never_forwarded(make_session, backend, scheduler, deliver):
    session = make_session()
    _feed(session, scheduler, QUIET, 200)
    # exactly at the threshold is not speech either
    _feed(session, scheduler, pcm16_frame(150, 960), 10)

    assert backend.latest.sent == []
    assert deliver.calls == []
    assert session.state is SpeakerState.IDLE
    assert not session.sending


def test_onset_sends_preroll_in_order_then_trigger(make_session, backend, scheduler):
    session = make_session(SessionSettings(preroll_frames=3))
    buffered = [pcm16_frame(value, 960) for value in (11, 12, 13, 14, 15)]
    for frame in buffered:
        session.handle_frame(frame)
        scheduler.advance(FRAME_SEC)
    assert session.preroll_size() == 3

    session.handle_frame(LOUD)

    assert backend.latest.sent == buffered[2:] + [LOUD]
    assert session.preroll_size() == 0
    assert session.sending
    assert session.speaking


def test_preroll_not_filled_while_sending(make_session, backend, scheduler):
    session = make_session()
    session.handle_frame(LOUD)
    _feed(session, scheduler, QUIET, 5)

    assert session.preroll_size() == 0
    assert backend.latest.sent == [LOUD] + [QUIET] * 5
    assert session.state is SpeakerState.SILENCE_TRAILING


def test_frames_dropped_until_connection_opens(make_session, backend, scheduler, metrics):
    backend.auto_open = False
    session = make_session()
    session.handle_frame(LOUD)
    assert backend.latest.sent == []
    assert metrics.render()["frames_dropped_not_ready"] == 1

    backend.latest.open()
    session.handle_frame(LOUD)
    assert backend.latest.sent == [LOUD]


def test_hello_there_delivered_once_after_base_silence(
    make_session, backend, scheduler, clock, deliver
):
    """Alternating speech then a 1600ms quiet tail yields one delivery at >= 1500ms."""
    session = make_session()
    for index in range(20):
        session.handle_frame(LOUD if index % 2 else QUIET)
        scheduler.advance(FRAME_SEC)
    backend.latest.transcript("hello")
    backend.latest.transcript("there")

    tail_start = clock.now
    for _ in range(80):
        session.handle_frame(QUIET)
        if clock.now - tail_start < 1.5 - 1e-6:
            assert deliver.calls == []
        scheduler.advance(FRAME_SEC)
        if clock.now - tail_start < 1.5 - 1e-6:
            assert deliver.calls == []

    assert deliver.calls == [("spk-1", "hello there")]
    assert session.state is SpeakerState.IDLE
    assert not session.sending
    assert session.transcript == ""


def test_silence_timer_flushes_when_frames_stop(make_session, backend, scheduler, deliver):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("hi")
    session.handle_frame(QUIET)

    scheduler.advance(1.4)
    assert deliver.calls == []
    scheduler.advance(0.2)
    assert deliver.texts == ["hi"]
    assert session.state is SpeakerState.IDLE


def test_speech_cancels_trailing_silence(make_session, backend, scheduler, deliver):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("still")
    _feed(session, scheduler, QUIET, 50)
    session.handle_frame(LOUD)
    assert session.state is SpeakerState.SPEAKING
    assert session.pending_silence is None

    scheduler.advance(1.0)
    assert deliver.calls == []
    assert session.sending


def test_finality_flushes_after_quiet_window(make_session, backend, scheduler, deliver, metrics):
    session = make_session()
    _feed(session, scheduler, LOUD, 5)
    backend.latest.transcript("good afternoon", speech_final=True)
    assert session.state is SpeakerState.AWAITING_FINALITY

    scheduler.advance(1.49)
    assert deliver.calls == []
    scheduler.advance(0.02)
    assert deliver.texts == ["good afternoon"]
    assert session.state is SpeakerState.IDLE
    assert metrics.render()["deliveries"] == {"finality": 1}


def test_good_morning_finality_flush_suppressed_by_new_speech(
    make_session, backend, scheduler, deliver, metrics
):
    session = make_session()
    _feed(session, scheduler, LOUD, 5)
    backend.latest.transcript("good morning")
    backend.latest.finality()
    pending = session.pending_finality
    assert pending is not None

    scheduler.advance(0.5)
    session.handle_frame(LOUD)
    scheduler.advance(1.0)

    assert deliver.calls == []
    assert session.pending_finality is None
    assert session.transcript == "good morning"
    assert metrics.render()["finality_flush_skipped"] == 1

    backend.latest.transcript("everyone")
    _feed(session, scheduler, QUIET, 80)
    assert deliver.texts == ["good morning everyone"]


def test_finality_race_skips_exactly_once(make_session, backend, scheduler, deliver, metrics):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("one")
    backend.latest.finality()
    scheduler.advance(0.1)
    session.handle_frame(LOUD)
    scheduler.advance(1.5)
    assert deliver.calls == []

    backend.latest.transcript("two", speech_final=True)
    scheduler.advance(1.5)

    assert deliver.texts == ["one two"]
    assert metrics.render()["finality_flush_skipped"] == 1


def test_repeated_finality_rearms_single_timer(make_session, backend, scheduler, deliver):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("a", speech_final=True)
    first = session.pending_finality
    scheduler.advance(1.0)
    backend.latest.transcript("b", speech_final=True)

    assert session.pending_finality is not first
    scheduler.advance(1.0)
    assert deliver.calls == []
    scheduler.advance(0.5)
    assert deliver.texts == ["a b"]


def test_whitespace_transcript_never_delivers(make_session, backend, scheduler, deliver):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("   ")
    backend.latest.transcript("\t", speech_final=True)
    scheduler.advance(2.0)
    _feed(session, scheduler, QUIET, 100)

    assert deliver.calls == []
    assert session.transcript == ""


def test_interim_results_are_not_accumulated(make_session, backend):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("partial guess", is_final=False)
    backend.latest.transcript("final words")

    assert session.transcript == "final words"


def test_finality_elevates_threshold(make_session, backend, scheduler):
    session = make_session()
    _feed(session, scheduler, pcm16_frame(600, 960), 5)
    backend.latest.finality()

    assert session.threshold.threshold == pytest.approx(300.0)
    assert session.threshold.elevated_at is not None


def test_second_finality_without_speech_keeps_threshold(make_session, backend, scheduler):
    session = make_session()
    _feed(session, scheduler, pcm16_frame(600, 960), 5)
    backend.latest.finality()
    scheduler.advance(0.3)
    backend.latest.finality()

    assert session.threshold.threshold == pytest.approx(300.0)


def test_frames_under_raised_threshold_count_as_silence(
    make_session, backend, scheduler, deliver, metrics
):
    session = make_session()
    _feed(session, scheduler, pcm16_frame(600, 960), 5)
    backend.latest.transcript("hi", speech_final=True)
    assert session.threshold.threshold == pytest.approx(300.0)

    # above the base threshold but not above the raised one
    trailing = pcm16_frame(250, 960)
    _feed(session, scheduler, trailing, 80)

    assert deliver.texts == ["hi"]
    assert metrics.render()["deliveries"] == {"finality": 1}
    assert metrics.render()["finality_flush_skipped"] == 0
    assert session.state is SpeakerState.IDLE

    sent = len(backend.latest.sent)
    _feed(session, scheduler, trailing, 10)
    session.handle_frame(pcm16_frame(300, 960))

    assert len(backend.latest.sent) == sent
    assert not session.sending
    assert session.state is SpeakerState.IDLE
    assert metrics.render()["utterances_started"] == 1

    session.handle_frame(pcm16_frame(301, 960))
    assert session.sending
    assert metrics.render()["utterances_started"] == 2


def test_malformed_frame_is_dropped(make_session, backend, metrics, caplog):
    caplog.set_level(logging.DEBUG, logger="voice_gate")
    session = make_session()

    assert session.handle_frame(b"\x01\x02\x03") is False
    assert session.handle_frame("not audio") is False
    assert session.handle_frame(LOUD) is True
    assert metrics.render()["frames_malformed"] == 2
    assert "ERR1003" in caplog.text


def test_close_flushes_leftover_text_once(make_session, backend, deliver, scheduler):
    session = make_session()
    session.handle_frame(LOUD)
    backend.latest.transcript("bye now")

    session.close("departed")
    session.close("departed")
    scheduler.advance(10.0)

    assert deliver.texts == ["bye now"]
    assert backend.latest.closed
    assert session.handle_frame(LOUD) is False
    assert len(backend.connections) == 1


def test_delivery_failure_is_logged(backend, scheduler, metrics, caplog):
    def failing_deliver(identity, text):
        raise RuntimeError("channel gone")

    session = SpeakerSession(
        SpeakerIdentity("spk-2", "Bob"),
        SessionSettings(),
        backend,
        failing_deliver,
        scheduler=scheduler,
        time_fn=scheduler.clock,
        metrics=metrics,
    )
    session.start()
    session.handle_frame(LOUD)
    backend.latest.transcript("lost", speech_final=True)
    scheduler.advance(2.0)

    assert metrics.render()["delivery_failures"] == 1
    assert "ERR3001" in caplog.text
    assert session.state is SpeakerState.IDLE


def test_full_backend_buffer_does_not_reject_frames(make_session, backend, metrics):
    session = make_session()
    backend.latest.buffer_full = True

    assert session.handle_frame(LOUD) is True
    assert session.handle_frame(LOUD) is True
    assert session.sending
    assert metrics.render()["frames_dropped_backpressure"] == 2


def test_without_local_vad_every_frame_is_forwarded(make_session, backend, scheduler, deliver):
    session = make_session(SessionSettings(local_vad=False))
    _feed(session, scheduler, QUIET, 10)

    assert backend.latest.sent == [QUIET] * 10
    assert session.sending
    assert session.preroll_size() == 0

    backend.latest.transcript("quiet words")
    scheduler.advance(1.4)
    assert deliver.calls == []
    scheduler.advance(0.2)
    assert deliver.texts == ["quiet words"]
    assert not session.sending
    assert session.state is SpeakerState.IDLE


def test_snapshot_reports_last_audio_time(make_session, clock):
    session = make_session()
    assert session.snapshot()["last_audio_at"] is None

    session.handle_frame(QUIET)

    assert session.snapshot()["last_audio_at"] == clock.now
