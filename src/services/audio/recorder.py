"""Microphone recorder state machine.

States: ``idle -> recording <-> paused -> stopping -> stopped``. Any
non-idle state returns to ``idle`` through ``discard()``; ``restart()``
goes through ``idle`` (release, then acquire). The live stream and its
chunk buffer live in one ``CaptureSession`` owned by the recorder, and
the finished ``Recording`` leaves it only through ``take_recording()``.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from src.core.config import get_settings
from src.core.exceptions import RecorderStateError
from src.core.models import Recording, RecorderState
from src.services.audio.capture import BaseMediaCapture, BaseMediaStream

logger = logging.getLogger(__name__)

StateCallback = Callable[[RecorderState, RecorderState], None]


@dataclass
class CaptureSession:
    """The live stream plus every chunk it produced since ``start()``."""

    stream: BaseMediaStream
    chunks: list[bytes] = field(default_factory=list)

    @property
    def size(self) -> int:
        return sum(len(c) for c in self.chunks)


class Recorder:
    """Captures one take from the microphone.

    Args:
        capture: Capability used to acquire the microphone stream.
        tick_interval: Seconds per elapsed-time tick (default from settings).
        on_state_change: Optional observer called with ``(old, new)``.
    """

    def __init__(
        self,
        capture: BaseMediaCapture,
        tick_interval: float | None = None,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self._capture = capture
        self._tick_interval = (
            tick_interval if tick_interval is not None else get_settings().recorder_tick_interval
        )
        self._on_state_change = on_state_change
        self._state = RecorderState.idle
        self._session: CaptureSession | None = None
        self._recording: Recording | None = None
        self._elapsed = 0
        self._acquiring = False
        # Bumped by discard(); a start() that outlives it gives its stream back
        self._generation = 0
        self._clock_task: asyncio.Task | None = None
        self._finalize_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed

    @property
    def recording(self) -> Recording | None:
        """The finished take while ``stopped``, else None."""
        return self._recording

    @property
    def active_tracks(self) -> int:
        if self._session is None:
            return 0
        return self._session.stream.active_tracks

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Acquire the microphone and begin capturing.

        If ``discard()`` or ``close()`` runs while the microphone is being
        acquired, the new stream is released and the recorder stays idle.

        Raises:
            RecorderStateError: If the recorder is not idle.
            DeviceError: If the microphone cannot be acquired (retryable).
        """
        if self._acquiring:
            raise RecorderStateError("start", "starting")
        if self._state is not RecorderState.idle:
            raise RecorderStateError("start", self._state)

        generation = self._generation
        self._acquiring = True
        try:
            stream = await self._capture.acquire()
        finally:
            self._acquiring = False
        if generation != self._generation:
            stream.release()
            logger.info("Recording discarded while the microphone was starting")
            return

        self._session = CaptureSession(stream=stream)
        self._recording = None
        self._elapsed = 0
        self._set_state(RecorderState.recording)
        self._clock_task = asyncio.create_task(self._run_clock())
        logger.info("Recording started (%s)", stream.mime_type)

    def pause(self) -> None:
        if self._state is not RecorderState.recording or self._session is None:
            return
        self._session.stream.pause()
        self._set_state(RecorderState.paused)

    def resume(self) -> None:
        if self._state is not RecorderState.paused or self._session is None:
            return
        self._session.stream.resume()
        self._set_state(RecorderState.recording)

    async def stop(self) -> Recording:
        """Finalize the take and release the microphone.

        Resolves only after the stream's flush has completed. A second
        ``stop()`` while ``stopping`` joins the same finalization.
        """
        if self._state is RecorderState.stopping:
            return await self.wait_finalized()
        if self._state is RecorderState.stopped and self._recording is not None:
            return self._recording
        if self._state not in (RecorderState.recording, RecorderState.paused):
            raise RecorderStateError("stop", self._state)

        self._stop_clock()
        self._set_state(RecorderState.stopping)
        self._finalize_task = asyncio.create_task(self._finalize(self._session))
        return await self.wait_finalized()

    async def wait_finalized(self) -> Recording:
        """Wait for the in-flight finalization and return its Recording."""
        if self._state is RecorderState.stopped and self._recording is not None:
            return self._recording
        task = self._finalize_task
        if task is None:
            raise RecorderStateError("wait for the recording", self._state)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                # Finalization was cancelled by discard(), not the caller
                raise RecorderStateError("finish the recording", self._state) from None
            raise

    async def restart(self) -> None:
        """Drop the current take (finalized or not) and start a new one."""
        self.discard()
        await self.start()

    def discard(self) -> None:
        """Release the microphone and drop all captured audio."""
        self._generation += 1
        if (
            self._state is RecorderState.idle
            and self._session is None
            and self._recording is None
        ):
            return
        self._stop_clock()
        if self._finalize_task is not None and not self._finalize_task.done():
            self._finalize_task.cancel()
        self._finalize_task = None
        if self._session is not None:
            self._session.stream.release()
            self._session = None
        self._recording = None
        self._elapsed = 0
        self._set_state(RecorderState.idle)
        logger.info("Recording discarded")

    async def finish(self) -> Recording:
        """Return the finished take, finalizing first if still capturing."""
        if self._state in (
            RecorderState.recording,
            RecorderState.paused,
            RecorderState.stopping,
        ):
            return await self.stop()
        if self._state is RecorderState.stopped and self._recording is not None:
            return self._recording
        raise RecorderStateError("finish", self._state)

    def take_recording(self) -> Recording:
        """Hand the finished take to the caller; the recorder returns to idle."""
        if self._state is not RecorderState.stopped or self._recording is None:
            raise RecorderStateError("take the recording", self._state)
        recording, self._recording = self._recording, None
        self._finalize_task = None
        self._elapsed = 0
        self._set_state(RecorderState.idle)
        return recording

    async def close(self) -> None:
        """Tear down: cancel background work and release every device track."""
        pending = [
            t for t in (self._clock_task, self._finalize_task) if t is not None and not t.done()
        ]
        self.discard()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance the clock one tick and pull the chunks produced so far.

        No-op unless recording, so the clock freezes while paused.
        """
        if self._state is not RecorderState.recording or self._session is None:
            return
        self._elapsed += 1
        self._session.chunks.extend(self._session.stream.collect_chunks())

    async def _run_clock(self) -> None:
        while True:
            await asyncio.sleep(self._tick_interval)
            self.tick()

    def _stop_clock(self) -> None:
        if self._clock_task is not None:
            self._clock_task.cancel()
            self._clock_task = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _finalize(self, session: CaptureSession) -> Recording:
        try:
            session.chunks.extend(session.stream.collect_chunks())
            session.chunks.extend(await session.stream.flush())
        except Exception:
            logger.exception("Failed to finalize recording")
            session.stream.release()
            self._session = None
            self._elapsed = 0
            self._set_state(RecorderState.idle)
            raise
        session.stream.release()

        recording = Recording(
            data=b"".join(session.chunks),
            duration_seconds=self._elapsed,
            mime_type=session.stream.mime_type,
        )
        self._session = None
        self._recording = recording
        self._set_state(RecorderState.stopped)
        logger.info(
            "Recording finalized: %ds, %d bytes", recording.duration_seconds, recording.size
        )
        return recording

    def _set_state(self, new: RecorderState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        logger.debug("Recorder %s -> %s", old, new)
        if self._on_state_change is not None:
            try:
                self._on_state_change(old, new)
            except Exception:
                logger.warning("Recorder state observer failed", exc_info=True)
