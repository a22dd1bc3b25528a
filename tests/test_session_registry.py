from unittest.mock import MagicMock

import pytest

from voice_gate.backend.application.session_registry import (
    SessionRegistry,
    SessionRegistryHooks,
)
from voice_gate.backend.application.speaker_session import SpeakerIdentity, SpeakerSession
from voice_gate.backend.runtime.config import SessionSettings
from voice_gate.errors import ErrorCode, GateError
from voice_gate.utils.audio import pcm16_frame

LOUD = pcm16_frame(1000, 960)


@pytest.fixture
def hooks():
    return SessionRegistryHooks(on_create=MagicMock(), on_remove=MagicMock())


@pytest.fixture
def registry(backend, deliver, scheduler, clock, hooks):
    def factory(speaker_id, display_name):
        return SpeakerSession(
            SpeakerIdentity(speaker_id, display_name),
            SessionSettings(),
            backend,
            deliver,
            scheduler=scheduler,
            time_fn=clock,
        )

    return SessionRegistry(factory, hooks)


def test_get_or_create_returns_same_session(registry, backend, hooks):
    first = registry.get_or_create("spk-1", "Alice")
    second = registry.get_or_create("spk-1", "Alice")

    assert first is second
    assert registry.active_count() == 1
    assert len(backend.connections) == 1
    assert backend.latest.started
    hooks.on_create.assert_called_once_with(first)


def test_display_name_defaults_to_speaker_id(registry):
    session = registry.get_or_create("spk-9")
    assert session.identity.display_name == "spk-9"


def test_missing_speaker_id_is_rejected(registry):
    with pytest.raises(GateError) as excinfo:
        registry.get_or_create("", "Nobody")
    assert excinfo.value.code == ErrorCode.SPEAKER_ID_REQUIRED
    assert registry.active_count() == 0


def test_teardown_is_idempotent(registry, backend, deliver, hooks):
    session = registry.get_or_create("spk-1", "Alice")
    session.handle_frame(LOUD)
    backend.latest.transcript("see you")

    assert registry.teardown("spk-1", "departed") is True
    assert registry.teardown("spk-1", "departed") is False

    assert deliver.texts == ["see you"]
    assert backend.latest.closed
    assert registry.get("spk-1") is None
    hooks.on_remove.assert_called_once_with(session)


def test_rejoin_starts_fresh_session(registry, backend):
    first = registry.get_or_create("spk-1", "Alice")
    registry.teardown("spk-1")
    second = registry.get_or_create("spk-1", "Alice")

    assert second is not first
    assert len(backend.connections) == 2
    assert second.connection.reconnect_attempts == 0


def test_teardown_all(registry, backend):
    for speaker_id in ("a", "b", "c"):
        registry.get_or_create(speaker_id)

    assert sorted(registry.speaker_ids()) == ["a", "b", "c"]
    assert registry.teardown_all() == 3
    assert registry.active_count() == 0
    assert all(connection.closed for connection in backend.connections)
