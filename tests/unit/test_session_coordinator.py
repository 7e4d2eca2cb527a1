"""Unit tests for the SessionCoordinator state machine."""

import pytest
import asyncio
import itertools
from pathlib import Path
from unittest.mock import AsyncMock, Mock

from murmur.errors import (
    BackendExitMismatchError,
    DecodeFailedError,
    InvalidBackendError,
    ServerUnreachableError,
    SpawnFailedError,
    TranscriptionError,
)
from murmur.models.backend import NamedBackend
from murmur.models.session import SessionState
from murmur.recording.backends import BackendSelector
from murmur.services.session_coordinator import GRACE_DELAY, SessionCoordinator


def make_coordinator(config, supervisor, client, processor=None):
    notifier = Mock()
    selector = BackendSelector.from_config(config, which=lambda name: None, device_counter=lambda: 0)
    coordinator = SessionCoordinator(
        config,
        supervisor=supervisor,
        client=client,
        selector=selector,
        processor=processor,
        notifier=notifier,
    )
    return coordinator, notifier


def reported_errors(notifier):
    return [call.args[0] for call in notifier.error.call_args_list]


def done_transitions(notifier):
    return [call for call in notifier.state_changed.call_args_list if call.args[2] == SessionState.DONE]


async def start_session(coordinator, display, callback, choice=None):
    session = await coordinator.start(callback, choice=choice, display=display)
    assert session is not None
    # The capture tool would create the file; the fake supervisor does not
    Path(session.raw_file_path).write_bytes(b"RIFF")
    return session


@pytest.mark.unit
class TestSessionStart:
    """Test cases for starting a session."""

    def test_unreachable_server_stays_idle(self, test_config, fake_supervisor, fake_client, fake_display):
        fake_client.healthy = False
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        session = asyncio.run(coordinator.start(callback, display=fake_display))

        assert session is None
        assert coordinator.state == SessionState.IDLE
        assert fake_supervisor.spawned == []
        assert not Path(test_config.get_store_directory()).exists()
        assert isinstance(reported_errors(notifier)[0], ServerUnreachableError)
        callback.assert_not_called()

    def test_invalid_backend_is_reported(self, test_config, fake_supervisor, fake_client):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)

        session = asyncio.run(coordinator.start(Mock(), choice=NamedBackend("pulse")))

        assert session is None
        assert coordinator.state == SessionState.IDLE
        assert fake_supervisor.spawned == []
        assert isinstance(reported_errors(notifier)[0], InvalidBackendError)

    def test_configured_command_is_used(self, test_config, fake_supervisor, fake_client):
        test_config.set('recording.command', ["arecord", "-D", "hw:1", "rec.wav"])
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            session = await coordinator.start(Mock())
            coordinator.cancel()
            fake_supervisor.exit(1)
            return session

        session = asyncio.run(scenario())

        executable, args, tag = fake_supervisor.spawned[0]
        assert executable == "arecord"
        assert args == ["-D", "hw:1", session.raw_file_path]
        assert tag == session.session_id
        assert session.profile.expected_exit_code == 1

    def test_probed_sox_is_spawned_with_temp_file(self, test_config, fake_supervisor, fake_client, fake_display):
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            session = await start_session(coordinator, fake_display, Mock())
            assert coordinator.state == SessionState.RECORDING
            coordinator.cancel()
            fake_supervisor.exit(0)
            return session

        session = asyncio.run(scenario())

        executable, args, _ = fake_supervisor.spawned[0]
        assert executable == "sox"
        assert args[-4:] == [session.raw_file_path, "trim", "0", "3600"]
        assert Path(session.raw_file_path).parent == Path(test_config.get_store_directory())

    def test_second_start_while_active_is_refused(self, test_config, fake_supervisor, fake_client):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            first = await coordinator.start(Mock())
            second = await coordinator.start(Mock())
            coordinator.cancel()
            fake_supervisor.exit(0)
            return first, second

        first, second = asyncio.run(scenario())

        assert first is not None
        assert second is None
        assert len(fake_supervisor.spawned) == 1
        assert notifier.notify.call_args.kwargs["level"] == "warning"

    def test_spawn_failure_cleans_up(self, test_config, fake_supervisor, fake_client, fake_display):
        fake_supervisor.spawn_error = SpawnFailedError("Failed to start recording process sox")
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        session = asyncio.run(coordinator.start(callback, display=fake_display))

        assert session.state == SessionState.DONE
        assert session.finished.is_set()
        assert session.status_timer.closed
        assert fake_display.close_calls == 1
        assert coordinator.state == SessionState.IDLE
        assert isinstance(reported_errors(notifier)[0], SpawnFailedError)
        callback.assert_not_called()

    def test_old_recordings_are_pruned(self, test_config, fake_supervisor, fake_client):
        test_config.set('storage.max_files', 1)
        store = Path(test_config.get_store_directory())
        store.mkdir(parents=True)
        for index in range(3):
            (store / f"rec_old{index}.wav").write_bytes(b"x")
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            await coordinator.start(Mock())
            coordinator.cancel()
            fake_supervisor.exit(0)

        asyncio.run(scenario())

        assert len(list(store.glob("rec_old*.wav"))) == 1


@pytest.mark.unit
class TestSessionFinish:
    """Test cases for confirm, exit and transcription."""

    def test_confirm_waits_grace_delay_before_stop(self, test_config, fake_supervisor, fake_client):
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            await coordinator.start(Mock())
            assert coordinator.confirm() is True
            assert coordinator.state == SessionState.AWAITING_TRANSCRIPTION
            await asyncio.sleep(GRACE_DELAY / 2)
            stops_before = fake_supervisor.stop_calls
            await asyncio.sleep(GRACE_DELAY)
            stops_after = fake_supervisor.stop_calls
            coordinator.cancel()
            fake_supervisor.exit(0)
            return stops_before, stops_after

        stops_before, stops_after = asyncio.run(scenario())

        assert stops_before == 0
        assert stops_after == 1

    def test_confirm_transcribes_after_exit(self, test_config, fake_supervisor, fake_client, fake_display):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await start_session(coordinator, fake_display, callback)
            coordinator.confirm()
            # Nothing is submitted before the capture tool exits
            await asyncio.sleep(GRACE_DELAY + 0.05)
            assert fake_client.requests == []
            fake_supervisor.exit(0)
            assert session.state == SessionState.TRANSCRIBING
            await asyncio.wait_for(session.wait(), timeout=2)
            return session

        session = asyncio.run(scenario())

        callback.assert_called_once_with("test")
        assert fake_client.requests == [(session.raw_file_path, "whisper-small", True)]
        assert not Path(session.raw_file_path).exists()
        assert session.status_timer.closed
        assert fake_display.close_calls == 1
        assert session.state == SessionState.DONE
        assert coordinator.state == SessionState.IDLE
        assert reported_errors(notifier) == []

    def test_sox_unexpected_exit_code_fails(self, test_config, fake_supervisor, fake_client):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await coordinator.start(callback)
            coordinator.confirm()
            fake_supervisor.exit(2, stderr=b"sox FAIL formats: can't open input")
            return session

        session = asyncio.run(scenario())

        assert session.state == SessionState.DONE
        errors = reported_errors(notifier)
        assert len(errors) == 1
        assert isinstance(errors[0], BackendExitMismatchError)
        assert errors[0].exit_code == 2
        assert "can't open input" in str(errors[0])
        assert fake_client.requests == []
        callback.assert_not_called()

    def test_arecord_exit_code_one_is_success(self, test_config, fake_supervisor, fake_client):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await coordinator.start(callback, choice=NamedBackend("arecord"))
            coordinator.confirm()
            fake_supervisor.exit(1)
            assert session.state == SessionState.TRANSCRIBING
            await asyncio.wait_for(session.wait(), timeout=2)

        asyncio.run(scenario())

        callback.assert_called_once_with("test")
        assert reported_errors(notifier) == []

    def test_exit_without_confirm_only_cleans_up(self, test_config, fake_supervisor, fake_client):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await coordinator.start(callback)
            fake_supervisor.exit(0)
            return session

        session = asyncio.run(scenario())

        assert session.state == SessionState.DONE
        assert fake_client.requests == []
        assert reported_errors(notifier) == []
        callback.assert_not_called()

    def test_transcription_failure_skips_callback(self, test_config, fake_supervisor, fake_client, fake_display):
        fake_client.error = DecodeFailedError("Failed to decode server response: oops")
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await start_session(coordinator, fake_display, callback)
            coordinator.confirm()
            fake_supervisor.exit(0)
            await asyncio.wait_for(session.wait(), timeout=2)
            return session

        session = asyncio.run(scenario())

        callback.assert_not_called()
        assert isinstance(session.error, DecodeFailedError)
        assert reported_errors(notifier) == [session.error]
        assert not Path(session.raw_file_path).exists()
        assert fake_display.close_calls == 1

    def test_unexpected_transcription_error_still_cleans_up(self, test_config, fake_supervisor, fake_client,
                                                           fake_display):
        fake_client.error = UnicodeDecodeError("utf-8", b"\xff\xfe", 0, 1, "invalid start byte")
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await start_session(coordinator, fake_display, callback)
            coordinator.confirm()
            fake_supervisor.exit(0)
            await asyncio.wait_for(session.wait(), timeout=2)
            # The coordinator accepts a new session afterwards
            fake_client.error = None
            second = await coordinator.start(Mock())
            coordinator.cancel()
            fake_supervisor.exit(0)
            return session, second

        session, second = asyncio.run(scenario())

        callback.assert_not_called()
        assert session.state == SessionState.DONE
        assert isinstance(session.error, TranscriptionError)
        assert isinstance(session.error.__cause__, UnicodeDecodeError)
        assert reported_errors(notifier) == [session.error]
        assert not Path(session.raw_file_path).exists()
        assert session.status_timer.closed
        assert fake_display.close_calls == 1
        assert second is not None
        assert coordinator.state == SessionState.IDLE

    def test_processed_file_is_transcribed(self, test_config, fake_supervisor, fake_client):
        processor = Mock(enabled=True)
        processor.process = AsyncMock(side_effect=lambda raw, processed: processed)
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client, processor=processor)

        async def scenario():
            session = await coordinator.start(Mock())
            Path(session.processed_file_path).write_bytes(b"RIFF")
            coordinator.confirm()
            fake_supervisor.exit(0)
            await asyncio.wait_for(session.wait(), timeout=2)
            return session

        session = asyncio.run(scenario())

        processor.process.assert_awaited_once_with(session.raw_file_path, session.processed_file_path)
        assert fake_client.requests[0][0] == session.processed_file_path
        assert not Path(session.processed_file_path).exists()

    def test_capture_output_is_kept_for_status(self, test_config, fake_supervisor, fake_client, fake_display):
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            session = await coordinator.start(Mock(), display=fake_display)
            fake_supervisor.on_stderr(b"In:0.00% 00:00:01.02 [00:00:00.00] Out:16.4k\r")
            coordinator._on_tick(session, 3)
            coordinator.cancel()
            fake_supervisor.exit(0)
            return session

        session = asyncio.run(scenario())

        assert session.last_output.startswith("In:0.00% 00:00:01.02")
        assert any(session.last_output in lines for lines in fake_display.updates)


@pytest.mark.unit
class TestSessionCancel:
    """Test cases for cancellation and host teardown."""

    def test_cancel_accepts_any_exit_code(self, test_config, fake_supervisor, fake_client, fake_display):
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await start_session(coordinator, fake_display, callback)
            assert coordinator.cancel() is True
            assert session.state == SessionState.CANCELLED
            assert fake_supervisor.stop_calls == 1
            fake_supervisor.exit(143, signal=15)
            return session

        session = asyncio.run(scenario())

        assert session.state == SessionState.DONE
        assert reported_errors(notifier) == []
        assert not Path(session.raw_file_path).exists()
        callback.assert_not_called()

    def test_cancel_during_grace_delay_skips_transcription(self, test_config, fake_supervisor, fake_client):
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await coordinator.start(callback)
            coordinator.confirm()
            coordinator.cancel()
            await asyncio.sleep(GRACE_DELAY + 0.05)
            fake_supervisor.exit(0)
            return session

        session = asyncio.run(scenario())

        assert session.state == SessionState.DONE
        # One stop from cancel, one from cleanup; the grace timer never fired
        assert fake_supervisor.stop_calls == 2
        assert fake_client.requests == []
        callback.assert_not_called()

    def test_destroyed_display_cancels_on_tick(self, test_config, fake_supervisor, fake_client, fake_display):
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        async def scenario():
            session = await coordinator.start(Mock(), display=fake_display)
            fake_display.valid = False
            coordinator._on_tick(session, 1)
            state = session.state
            fake_supervisor.exit(0)
            return session, state

        session, state_after_tick = asyncio.run(scenario())

        assert state_after_tick == SessionState.CANCELLED
        assert session.state == SessionState.DONE
        assert fake_display.close_calls == 0

    def test_cancel_while_transcribing(self, test_config, fake_supervisor, fake_client):
        async def slow_transcribe(file_path, model):
            await asyncio.sleep(10)

        fake_client.transcribe = slow_transcribe
        coordinator, notifier = make_coordinator(test_config, fake_supervisor, fake_client)
        callback = Mock()

        async def scenario():
            session = await coordinator.start(callback)
            coordinator.confirm()
            fake_supervisor.exit(0)
            await asyncio.sleep(0.01)
            assert coordinator.cancel() is True
            await asyncio.sleep(0.01)
            return session

        session = asyncio.run(scenario())

        assert session.state == SessionState.DONE
        assert session.transcription_task.cancelled()
        assert reported_errors(notifier) == []
        callback.assert_not_called()

    def test_cancel_without_session(self, test_config, fake_supervisor, fake_client):
        coordinator, _ = make_coordinator(test_config, fake_supervisor, fake_client)

        assert coordinator.cancel() is False
        assert coordinator.confirm() is False


EVENTS = ("tick", "exit", "cancel", "confirm", "teardown")


@pytest.mark.unit
@pytest.mark.parametrize("order", list(itertools.permutations(EVENTS)))
def test_cleanup_runs_once_for_any_interleaving(order, test_config, fake_supervisor, fake_client, fake_display):
    """Every ordering of session events releases the session resources exactly once."""
    supervisor = fake_supervisor
    coordinator, notifier = make_coordinator(test_config, supervisor, fake_client)
    callback = Mock()
    removed = []
    remove_file = coordinator.file_manager.remove_file
    coordinator.file_manager.remove_file = lambda path: removed.append(path) or remove_file(path)

    async def scenario():
        session = await start_session(coordinator, fake_display, callback)
        for event in order:
            if event == "tick":
                coordinator._on_tick(session, 7)
            elif event == "exit":
                supervisor.exit(session.profile.expected_exit_code)
            elif event == "cancel":
                coordinator.cancel()
            elif event == "confirm":
                coordinator.confirm()
            elif event == "teardown":
                fake_display.valid = False
                coordinator.teardown()
            await asyncio.sleep(0)

        # A second exit notification must be harmless
        supervisor.exit(session.profile.expected_exit_code)
        await asyncio.wait_for(session.wait(), timeout=2)
        await asyncio.sleep(GRACE_DELAY + 0.05)
        return session

    session = asyncio.run(scenario())

    assert session.state == SessionState.DONE
    assert len(done_transitions(notifier)) == 1
    assert removed == [session.raw_file_path, None]
    assert fake_display.close_calls <= 1
    assert session.status_timer.closed
    assert callback.call_count <= 1
    assert reported_errors(notifier) == []
    assert coordinator.state == SessionState.IDLE
