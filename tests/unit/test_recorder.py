"""Unit tests for the microphone Recorder state machine."""

import asyncio

import pytest

from src.core.exceptions import DeviceError, DeviceErrorKind, RecorderStateError
from src.core.models import RecorderState
from src.services.audio.recorder import Recorder


@pytest.fixture
async def recorder(capture):
    """Recorder whose clock never fires on its own; tests call ``tick()``."""
    rec = Recorder(capture, tick_interval=3600)
    yield rec
    await rec.close()


async def _stopping(recorder):
    """Start ``stop()`` in the background and let it reach ``stopping``."""
    task = asyncio.create_task(recorder.stop())
    await asyncio.sleep(0)
    return task


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


class TestStart:
    async def test_start_acquires_microphone(self, recorder, capture):
        await recorder.start()

        assert recorder.state is RecorderState.recording
        assert recorder.elapsed_seconds == 0
        assert recorder.active_tracks == 1
        assert len(capture.streams) == 1

    async def test_start_while_recording_is_rejected(self, recorder, capture):
        await recorder.start()

        with pytest.raises(RecorderStateError):
            await recorder.start()
        assert len(capture.streams) == 1

    async def test_device_error_leaves_recorder_idle(self, recorder, capture):
        capture.error = DeviceError(DeviceErrorKind.permission_denied)

        with pytest.raises(DeviceError) as exc_info:
            await recorder.start()

        assert exc_info.value.kind is DeviceErrorKind.permission_denied
        assert recorder.state is RecorderState.idle
        assert recorder.active_tracks == 0

    async def test_start_can_be_retried_after_device_error(self, recorder, capture):
        capture.error = DeviceError(DeviceErrorKind.busy)
        with pytest.raises(DeviceError):
            await recorder.start()

        capture.error = None
        await recorder.start()
        assert recorder.state is RecorderState.recording

    @pytest.mark.parametrize("teardown", ["close", "discard"])
    async def test_teardown_during_acquire_releases_the_stream(self, recorder, capture, teardown):
        capture.acquire_gate = asyncio.Event()
        task = asyncio.create_task(recorder.start())
        await asyncio.sleep(0)

        if teardown == "close":
            await recorder.close()
        else:
            recorder.discard()
        capture.acquire_gate.set()
        await task

        assert recorder.state is RecorderState.idle
        assert recorder.active_tracks == 0
        assert capture.live_tracks == 0
        assert len(capture.streams) == 1

    async def test_start_after_abandoned_start(self, recorder, capture):
        capture.acquire_gate = asyncio.Event()
        task = asyncio.create_task(recorder.start())
        await asyncio.sleep(0)
        recorder.discard()
        capture.acquire_gate.set()
        await task

        await recorder.start()

        assert recorder.state is RecorderState.recording
        assert capture.live_tracks == 1


# ---------------------------------------------------------------------------
# Clock, pause and resume
# ---------------------------------------------------------------------------


class TestClock:
    async def test_tick_advances_elapsed_and_collects_chunks(self, recorder):
        await recorder.start()
        recorder.tick()
        recorder.tick()

        assert recorder.elapsed_seconds == 2

    async def test_tick_is_ignored_while_paused(self, recorder, capture):
        await recorder.start()
        recorder.tick()
        recorder.pause()

        recorder.tick()
        recorder.tick()

        assert recorder.state is RecorderState.paused
        assert recorder.elapsed_seconds == 1
        assert capture.streams[0].paused is True

    async def test_resume_continues_from_frozen_value(self, recorder, capture):
        await recorder.start()
        recorder.tick()
        recorder.pause()
        recorder.resume()
        recorder.tick()

        assert recorder.state is RecorderState.recording
        assert recorder.elapsed_seconds == 2
        assert capture.streams[0].paused is False

    async def test_pause_outside_recording_is_a_noop(self, recorder):
        recorder.pause()
        assert recorder.state is RecorderState.idle

        recorder.resume()
        assert recorder.state is RecorderState.idle

    async def test_background_clock_ticks(self, capture):
        recorder = Recorder(capture, tick_interval=0.01)
        await recorder.start()
        await asyncio.sleep(0.05)

        assert recorder.elapsed_seconds >= 1
        await recorder.close()


# ---------------------------------------------------------------------------
# stop
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_returns_all_chunks_in_order(self, recorder, capture):
        await recorder.start()
        for _ in range(5):
            recorder.tick()

        recording = await recorder.stop()

        assert recording.data == b"chunk-1chunk-2tail"
        assert recording.duration_seconds == 5
        assert recording.mime_type == "audio/webm;codecs=opus"
        assert recorder.state is RecorderState.stopped
        assert recorder.recording is recording
        assert capture.live_tracks == 0

    async def test_stop_from_paused(self, recorder):
        await recorder.start()
        recorder.tick()
        recorder.pause()

        recording = await recorder.stop()

        assert recording.duration_seconds == 1
        assert recorder.state is RecorderState.stopped

    async def test_stop_waits_for_flush(self, recorder, capture):
        await recorder.start()
        stream = capture.streams[0]
        stream.flush_gate = asyncio.Event()

        task = await _stopping(recorder)

        assert recorder.state is RecorderState.stopping
        assert recorder.recording is None
        assert not task.done()

        stream.flush_gate.set()
        recording = await task
        assert recording.data.endswith(b"tail")

    async def test_concurrent_stop_finalizes_once(self, recorder, capture):
        await recorder.start()
        stream = capture.streams[0]
        stream.flush_gate = asyncio.Event()

        first = await _stopping(recorder)
        second = asyncio.create_task(recorder.stop())
        await asyncio.sleep(0)
        stream.flush_gate.set()

        assert await first is await second
        assert stream.flush_calls == 1

    async def test_stop_with_no_audio_yields_empty_recording(self, capture):
        capture.chunks = []
        capture.final = []
        recorder = Recorder(capture, tick_interval=3600)
        await recorder.start()

        recording = await recorder.stop()

        assert recording.size == 0

    async def test_stop_while_idle_is_rejected(self, recorder):
        with pytest.raises(RecorderStateError):
            await recorder.stop()

    async def test_flush_failure_returns_to_idle(self, recorder, capture):
        await recorder.start()
        capture.streams[0].flush_error = RuntimeError("encoder died")

        with pytest.raises(RuntimeError):
            await recorder.stop()

        assert recorder.state is RecorderState.idle
        assert capture.live_tracks == 0


# ---------------------------------------------------------------------------
# discard / restart
# ---------------------------------------------------------------------------


class TestDiscard:
    @pytest.mark.parametrize("target", ["recording", "paused", "stopped"])
    async def test_discard_releases_everything(self, recorder, capture, target):
        await recorder.start()
        recorder.tick()
        if target == "paused":
            recorder.pause()
        elif target == "stopped":
            await recorder.stop()

        recorder.discard()

        assert recorder.state is RecorderState.idle
        assert recorder.elapsed_seconds == 0
        assert recorder.recording is None
        assert capture.live_tracks == 0

    async def test_discard_while_stopping_cancels_finalization(self, recorder, capture):
        await recorder.start()
        capture.streams[0].flush_gate = asyncio.Event()
        task = await _stopping(recorder)

        recorder.discard()

        with pytest.raises(RecorderStateError):
            await task
        assert recorder.state is RecorderState.idle
        assert recorder.recording is None
        assert capture.live_tracks == 0

    async def test_restart_releases_before_acquiring(self, recorder, capture):
        await recorder.start()
        recorder.tick()

        await recorder.restart()

        assert capture.live_at_acquire == [0, 0]
        assert capture.streams[0].released is True
        assert recorder.state is RecorderState.recording
        assert recorder.elapsed_seconds == 0

    async def test_restart_from_stopped_drops_previous_take(self, recorder):
        await recorder.start()
        await recorder.stop()

        await recorder.restart()

        assert recorder.recording is None
        assert recorder.state is RecorderState.recording


# ---------------------------------------------------------------------------
# finish / take_recording / close
# ---------------------------------------------------------------------------


class TestHandOff:
    async def test_finish_finalizes_a_live_take(self, recorder):
        await recorder.start()
        recorder.tick()

        recording = await recorder.finish()

        assert recording.duration_seconds == 1
        assert recorder.state is RecorderState.stopped

    async def test_finish_returns_existing_take(self, recorder):
        await recorder.start()
        first = await recorder.stop()

        assert await recorder.finish() is first

    async def test_take_recording_returns_to_idle(self, recorder):
        await recorder.start()
        recorder.tick()
        await recorder.stop()

        recording = recorder.take_recording()

        assert recording.duration_seconds == 1
        assert recorder.state is RecorderState.idle
        assert recorder.elapsed_seconds == 0
        assert recorder.recording is None
        with pytest.raises(RecorderStateError):
            recorder.take_recording()

    async def test_close_releases_tracks(self, recorder, capture):
        await recorder.start()

        await recorder.close()

        assert capture.live_tracks == 0
        assert recorder.state is RecorderState.idle


class TestStateObserver:
    async def test_observer_sees_every_transition(self, capture):
        transitions = []
        recorder = Recorder(
            capture,
            tick_interval=3600,
            on_state_change=lambda old, new: transitions.append((old, new)),
        )

        await recorder.start()
        recorder.pause()
        recorder.resume()
        await recorder.stop()
        recorder.discard()

        assert transitions == [
            (RecorderState.idle, RecorderState.recording),
            (RecorderState.recording, RecorderState.paused),
            (RecorderState.paused, RecorderState.recording),
            (RecorderState.recording, RecorderState.stopping),
            (RecorderState.stopping, RecorderState.stopped),
            (RecorderState.stopped, RecorderState.idle),
        ]

    async def test_failing_observer_does_not_break_recording(self, capture):
        def boom(old, new):
            raise RuntimeError("observer bug")

        recorder = Recorder(capture, tick_interval=3600, on_state_change=boom)
        await recorder.start()
        recording = await recorder.stop()

        assert recording.size > 0
