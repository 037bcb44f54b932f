"""
Recording orchestration for festive postcard videos.

The orchestrator owns the recording state machine:

    Idle -> Starting -> Recording -> Stopping -> Validating -> Succeeded | Failed

It picks a backend from the capability probe, drives the frame loop from the
ticker, enforces the duration limits, races the encoder flush against a
timeout and falls back to the native recorder when the library encoder's
output is rejected. Every state change goes through ``_transition``.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Callable, Dict, List, Optional, Tuple

from .backends.base import EncoderConfig, EncoderHandle, RecordingBackend
from .canvas import Canvas
from .capabilities import CapabilityProbe, PlatformCapabilities
from .compositor import FrameComposer
from .config import Config
from .exceptions import (EncoderError, IncompatibleOutputError, PlaybackError,
                         RecordingError, RecordingTimeoutError, UnsupportedEnvironmentError)
from .models import (BackendKind, CompatibilityVerdict, CompositionInputs, EncodedArtifact,
                     Failed, FailureCause, Idle, Recording, RecordingMode, RecordingSession,
                     RecordingState, Starting, Stopping, Succeeded, Validating)
from .reencoder import ArtifactReencoder
from .scheduler import FrameTicker
from .upload_relay import UploadRelay
from .validator import CompatibilityValidator, get_profile

logger = logging.getLogger(__name__)

StateListener = Callable[[RecordingState], None]


class RecordingHandle:
    """Returned by ``start``: lets the caller wait for or cancel one recording."""

    def __init__(self, orchestrator: "RecordingOrchestrator", task: Optional[asyncio.Task]):
        self._orchestrator = orchestrator
        self._task = task

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    async def wait(self) -> RecordingState:
        """Wait until this recording reaches a terminal state (or is cancelled)."""
        if self._task is not None:
            await asyncio.wait([self._task])
        return self._orchestrator.state

    async def cancel(self):
        """Abort the recording if it is still the active one."""
        if self._task is not None and self._task is self._orchestrator._task:
            await self._orchestrator.abort()


class RecordingOrchestrator:
    """Drives one recording session at a time over a shared canvas."""

    def __init__(self, config: Config, composer: FrameComposer,
                 backends: Dict[BackendKind, RecordingBackend],
                 validator: Optional[CompatibilityValidator] = None,
                 probe: Optional[CapabilityProbe] = None,
                 ticker: Optional[FrameTicker] = None,
                 upload_relay: Optional[UploadRelay] = None,
                 reencoder: Optional[ArtifactReencoder] = None):
        self.config = config
        self.composer = composer
        self.backends = dict(backends)
        self.profile = get_profile(config.profile)
        self.validator = validator or CompatibilityValidator(self.profile)
        self.probe = probe or CapabilityProbe(config)
        self.ticker = ticker or FrameTicker(config.refresh_hz)
        self.upload_relay = upload_relay
        if reencoder is None and config.reencode_output:
            reencoder = ArtifactReencoder(config)
        self.reencoder = reencoder

        self._state: RecordingState = Idle()
        self._listeners: List[StateListener] = []
        self._task: Optional[asyncio.Task] = None
        self._start_lock = asyncio.Lock()
        self._stop_requested = False
        self._session: Optional[RecordingSession] = None

        self._inputs: Optional[CompositionInputs] = None
        self._canvas: Optional[Canvas] = None
        self._mode = RecordingMode.AUTOMATIC

    @property
    def state(self) -> RecordingState:
        return self._state

    def add_listener(self, callback: StateListener):
        self._listeners.append(callback)

    def remove_listener(self, callback: StateListener):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _transition(self, new_state: RecordingState):
        old_state = self._state
        self._state = new_state
        session = getattr(new_state, "session", None)
        if session is not None:
            session.status = new_state.status

        suffix = f" [{session.session_id}/{session.backend_kind.value}]" if session else ""
        logger.info(f"State {old_state.status.value} -> {new_state.status.value}{suffix}")

        for callback in list(self._listeners):
            try:
                callback(new_state)
            except Exception:
                logger.exception("State listener raised")

    # Public API

    async def start(self, inputs: CompositionInputs, canvas: Optional[Canvas],
                    mode: RecordingMode = RecordingMode.AUTOMATIC) -> RecordingHandle:
        """
        Begin a recording. Any session still running is aborted first.

        Args:
            inputs: Loaded composition inputs
            canvas: Canvas sized inputs.canvas_size square
            mode: Fixed-length automatic recording or manual (stop when ready)

        Returns:
            RecordingHandle for waiting on or cancelling the recording
        """
        async with self._start_lock:
            if self._task is not None and not self._task.done():
                logger.info("New recording requested, aborting the active session")
            await self._cancel_active()

            self._inputs = inputs
            self._canvas = canvas
            self._mode = RecordingMode(mode)
            self._stop_requested = False

            problem = self._missing_elements(inputs, canvas)
            if problem:
                logger.error(f"Cannot start recording: {problem}")
                self._transition(Failed(FailureCause.MISSING_ELEMENTS, problem))
                return RecordingHandle(self, None)

            capabilities = self.probe.probe()
            order = self._backend_order(capabilities)
            session = self._new_session(order[0], self._mode, capabilities)
            self._session = session
            self._transition(Starting(session))

            self._task = asyncio.create_task(self._run(session, order))
            return RecordingHandle(self, self._task)

    async def stop(self) -> RecordingState:
        """
        Request the end of a recording and wait for its outcome.

        A request before the minimum duration is held until the minimum is reached.
        """
        state = self._state
        if not isinstance(state, (Starting, Recording)):
            logger.debug(f"stop() ignored in state {state.status.value}")
            return state

        self._stop_requested = True
        session = state.session
        if session.elapsed_ms < session.min_duration_ms:
            logger.info(f"Stop requested at {session.elapsed_ms:.0f}ms, "
                        f"deferred until {session.min_duration_ms}ms")

        task = self._task
        if task is not None:
            await asyncio.wait([task])
        return self._state

    async def abort(self):
        """Teardown hook: cancel the frame loop, release the encoder and return to Idle."""
        if isinstance(self._state, Idle) or self._state.is_terminal:
            # A succeeded session may still be uploading; its state is kept
            await self._cancel_active()
            return
        await self._cancel_active()
        self._transition(Idle())

    async def retry(self, mode: Optional[RecordingMode] = None) -> RecordingHandle:
        """Start again with the inputs and canvas of the previous attempt."""
        if self._inputs is None:
            raise RuntimeError("No previous recording to retry")
        return await self.start(self._inputs, self._canvas, mode or self._mode)

    async def reset(self):
        """Abort any recording and forget the current inputs."""
        await self._cancel_active()
        self._inputs = None
        self._canvas = None
        self._session = None
        if not isinstance(self._state, Idle):
            self._transition(Idle())

    async def __aenter__(self) -> "RecordingOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.abort()

    # Session setup

    @staticmethod
    def _missing_elements(inputs: Optional[CompositionInputs], canvas: Optional[Canvas]) -> Optional[str]:
        if canvas is None:
            return "canvas not available"
        if inputs is None or not inputs.is_loaded():
            return "composition images or background video not loaded"
        if canvas.size != (inputs.canvas_size, inputs.canvas_size):
            return f"canvas is {canvas.size}, expected {inputs.canvas_size}x{inputs.canvas_size}"
        return None

    def _backend_order(self, capabilities: PlatformCapabilities) -> List[BackendKind]:
        if capabilities.supports_library_encoder and not capabilities.is_mobile:
            preferred = BackendKind.LIBRARY_ENCODER
        else:
            preferred = BackendKind.NATIVE_MEDIA_RECORDER
        return [preferred, preferred.alternate]

    def _new_session(self, kind: BackendKind, mode: RecordingMode,
                     capabilities: PlatformCapabilities) -> RecordingSession:
        if mode is RecordingMode.AUTOMATIC:
            return RecordingSession(
                backend_kind=kind,
                mode=mode,
                target_fps=self.config.auto_fps,
                target_duration_ms=self.config.auto_duration_ms,
            )
        fps = self.config.mobile_manual_fps if capabilities.is_mobile else self.config.manual_fps
        return RecordingSession(
            backend_kind=kind,
            mode=mode,
            target_fps=fps,
            target_duration_ms=None,
            min_duration_ms=self.config.min_manual_duration_ms,
            max_duration_ms=self.config.max_manual_duration_ms,
        )

    def _encoder_config(self, session: RecordingSession) -> EncoderConfig:
        if session.mode is RecordingMode.AUTOMATIC:
            bitrate = self.config.auto_bitrate
        else:
            bitrate = self.config.manual_bitrate
        return EncoderConfig(
            fps=session.target_fps,
            width=self._canvas.width,
            height=self._canvas.height,
            bitrate=bitrate,
            codec_profile=self.config.codec_profile,
        )

    async def _cancel_active(self):
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    # Session task

    async def _run(self, session: RecordingSession, order: List[BackendKind]):
        try:
            while True:
                backend, handle = await self._prepare(session, order)
                artifact = await self._record(session, backend, handle)

                self._transition(Validating(session, artifact))
                verdict = self.validator.validate(artifact, self.profile)
                if verdict.ok:
                    await self._succeed(session, artifact, verdict)
                    return

                reason = verdict.reason.value if verdict.reason else "rejected"
                fallback = BackendKind.NATIVE_MEDIA_RECORDER
                if (session.backend_kind is BackendKind.LIBRARY_ENCODER
                        and not session.fallback_attempt and fallback in self.backends):
                    logger.warning(f"Library encoder output rejected ({reason}), "
                                   f"retrying with the native recorder")
                    session = self._fallback_session(session)
                    order = [fallback]
                    self._transition(Starting(session))
                    continue

                raise IncompatibleOutputError(f"Output rejected for {self.profile.name}: {reason}")
        except asyncio.CancelledError:
            logger.info(f"Recording session {session.session_id} cancelled")
            raise
        except RecordingError as e:
            logger.error(f"Recording failed ({e.cause.value}): {e}")
            self._transition(Failed(e.cause, str(e), session))
        except Exception as e:
            logger.exception("Unexpected recording error")
            self._transition(Failed(FailureCause.ENCODER_ERROR, str(e), session))

    def _fallback_session(self, previous: RecordingSession) -> RecordingSession:
        session = RecordingSession(
            backend_kind=BackendKind.NATIVE_MEDIA_RECORDER,
            mode=previous.mode,
            target_fps=previous.target_fps,
            target_duration_ms=previous.target_duration_ms,
            min_duration_ms=previous.min_duration_ms,
            max_duration_ms=previous.max_duration_ms,
            fallback_attempt=True,
        )
        if previous.mode is RecordingMode.MANUAL:
            # Re-record as long as the rejected take
            session.min_duration_ms = max(session.min_duration_ms, int(previous.elapsed_ms))
        self._session = session
        return session

    async def _prepare(self, session: RecordingSession,
                       order: List[BackendKind]) -> Tuple[RecordingBackend, EncoderHandle]:
        """Prepare the preferred backend, falling back to the other one once."""
        errors = []
        for kind in order:
            backend = self.backends.get(kind)
            if backend is None:
                continue
            if session.backend_kind is not kind:
                logger.info(f"Falling back to {kind.value}")
                session.backend_kind = kind
                self._transition(Starting(session))
            try:
                handle = await backend.prepare(self._canvas, self._encoder_config(session))
            except RecordingError as e:
                logger.warning(f"{kind.value} could not be prepared: {e}")
                errors.append(e)
                continue
            return backend, handle

        details = "; ".join(str(e) for e in errors) or "no backend configured"
        raise UnsupportedEnvironmentError(f"No recording backend available: {details}",
                                          errors[-1] if errors else None)

    def _should_stop(self, session: RecordingSession) -> bool:
        target_frames = session.target_frames
        if target_frames is not None and session.frames_emitted >= target_frames:
            return True
        if session.max_duration_ms is not None and session.elapsed_ms >= session.max_duration_ms:
            return True
        return self._stop_requested and session.elapsed_ms >= session.min_duration_ms

    async def _record(self, session: RecordingSession, backend: RecordingBackend,
                      handle: EncoderHandle) -> EncodedArtifact:
        canvas = self._canvas
        inputs = self._inputs
        owner = session.session_id
        try:
            canvas.acquire(owner)
            started_at = self.ticker.now_ms()
            self._transition(Recording(session, started_at))
            try:
                inputs.background.play()
            except PlaybackError as e:
                logger.warning(f"Background video did not start, recording without it: {e}")

            interval = 1000.0 / session.target_fps
            last_capture: Optional[float] = None
            async with aclosing(self.ticker.ticks()) as ticks:
                async for timestamp in ticks:
                    elapsed = timestamp - started_at
                    if last_capture is None or timestamp - last_capture >= interval:
                        canvas.ensure_owner(owner)
                        self.composer.render_frame(canvas, inputs, elapsed)
                        backend.capture_frame(handle)
                        session.frames_emitted += 1
                        last_capture = timestamp
                        logger.debug(f"Frame {session.frames_emitted} at {elapsed:.0f}ms")
                    session.elapsed_ms = elapsed
                    if self._should_stop(session):
                        break

            self._transition(Stopping(session))
            try:
                artifact = await asyncio.wait_for(backend.finish(handle), self.config.finish_timeout_s)
            except asyncio.TimeoutError:
                backend.abort(handle)
                raise RecordingTimeoutError(
                    f"{session.backend_kind.value} did not finish within {self.config.finish_timeout_s}s"
                ) from None
            except RecordingError:
                raise
            except Exception as e:
                raise EncoderError(f"{session.backend_kind.value} failed to finish: {e}", e) from e

            session.output = artifact
            logger.info(f"Recorded {session.frames_emitted} frames in {session.elapsed_ms:.0f}ms")
            return artifact
        finally:
            canvas.release(owner)
            backend.abort(handle)

    async def _succeed(self, session: RecordingSession, artifact: EncodedArtifact,
                       verdict: CompatibilityVerdict):
        if self.reencoder is not None:
            artifact = await self.reencoder.reencode(artifact, self.profile)
            session.output = artifact

        self._transition(Succeeded(session, artifact, verdict.warnings))
        if self.upload_relay is None:
            return

        loop = asyncio.get_running_loop()
        try:
            upload = await loop.run_in_executor(None, self.upload_relay.upload, artifact)
        except Exception as e:
            logger.error(f"Upload failed, artifact kept locally: {e}")
            self._transition(Succeeded(session, artifact, verdict.warnings, upload_error=str(e)))
            return
        self._transition(Succeeded(session, artifact, verdict.warnings, upload=upload))
