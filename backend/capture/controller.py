"""
Capture session controller.

Responsibilities:
- Own the authoritative SessionState and publish SessionSnapshots
- Run the ordered acquisition sequence (authorization, microphone, route,
  sink, source) with guaranteed rollback
- Pump captured buffers from the PortAudio thread to the sink in order
- Relay sink results while STREAMING
- Tear down unconditionally and idempotently on stop, fault or sink error

Non-responsibilities:
- No device access (negotiator / source)
- No recognition (sink)
- No transport (HTTP surface subscribes to snapshots)

Threading:
- All state lives on the event loop the first start() ran on.
- stop() and hardware/route callbacks may arrive from any thread; they are
  marshalled onto the loop with call_soon_threadsafe.
- start() and teardown are serialized by one asyncio.Lock; a stop arriving
  mid-acquisition waits for acquisition to finish, then tears it down.
"""

from __future__ import annotations

import asyncio
import dataclasses
import threading
import time
from typing import Any, Callable, Coroutine

from audio.errors import SourceStartError
from audio.formats import ActiveFormat, CaptureBuffer
from audio.queues import CaptureBufferQueue
from capture.context import (
    AudioSourceProtocol,
    PermissionsProtocol,
    RouteNegotiatorProtocol,
    SinkFactory,
    TranscriptionSinkProtocol,
)
from capture.enums.authorization import Authorization
from capture.enums.state import SessionState
from capture.errors import (
    AcquisitionCancelled,
    AuthorizationDenied,
    AlreadyActive,
    RecognitionFailed,
    RouteUnavailable,
    SessionError,
    SourceUnavailable,
)
from capture.events import SinkEvent, TranscriptError, TranscriptFinal, TranscriptPartial
from capture.snapshot import SessionSnapshot, TranscriptionResult
from constants import CAPTURE_BUFFER_QUEUE_MAX
from observability.logger import log_event
from observability.metrics import timed


SnapshotObserver = Callable[[SessionSnapshot], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class CaptureSessionController:
    """
    The single capture session of this process.

    Public surface:
    - await start() -> ActiveFormat      (raises SessionError)
    - stop()                             (sync, any thread, never raises)
    - await stop_and_wait()
    - snapshot / subscribe(observer)

    Guarantees:
    - STREAMING is entered only with the route active, the sink open and
      the source started; leaving STREAMING always releases all three.
    - Teardown is safe from every state and idempotent.
    - Events from an earlier session (stale session_id) are ignored.
    """

    def __init__(
        self,
        *,
        negotiator: RouteNegotiatorProtocol,
        source: AudioSourceProtocol,
        sink_factory: SinkFactory,
        permissions: PermissionsProtocol,
        queue_max_buffers: int = CAPTURE_BUFFER_QUEUE_MAX,
    ) -> None:
        self._negotiator = negotiator
        self._source = source
        self._sink_factory = sink_factory
        self._permissions = permissions
        self._queue_max_buffers = queue_max_buffers

        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = asyncio.Lock()

        self._snapshot = SessionSnapshot()
        self._observers: list[SnapshotObserver] = []

        self._session_id: int = 0
        self._stop_guard = threading.Lock()
        self._stop_requests: int = 0
        self._pending_failure: SessionError | None = None

        # Per-session resources
        self._sink: TranscriptionSinkProtocol | None = None
        self._queue: CaptureBufferQueue | None = None
        self._buffer_ready: asyncio.Event | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._next_seq: int = 0

        self._teardown_errors: tuple[str, ...] = ()
        self._background: set[asyncio.Task[None]] = set()

        self._negotiator.set_interruption_handler(self._on_route_interrupted)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def teardown_errors(self) -> tuple[str, ...]:
        """Step failures recorded by the most recent teardown."""
        return self._teardown_errors

    def subscribe(self, observer: SnapshotObserver) -> Callable[[], None]:
        """
        Register an observer; it immediately receives the current snapshot.

        Observers run on the event loop thread, in publication order.
        Returns an unsubscribe function.
        """
        self._observers.append(observer)
        self._notify(observer, self._snapshot)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    # ------------------------------------------------------------------
    # start()
    # ------------------------------------------------------------------

    async def start(self) -> ActiveFormat:
        """
        Acquire microphone + route and begin streaming to a fresh sink.

        Raises:
            AlreadyActive, AuthorizationDenied, RouteUnavailable,
            SourceUnavailable, RecognitionFailed, AcquisitionCancelled.
            On any failure the session is back in IDLE with nothing held.
        """
        # Lock fast path does not yield, so check + acquire is atomic on the loop
        if self._snapshot.state is not SessionState.IDLE or self._lock.locked():
            raise AlreadyActive(self._snapshot.state.value)

        # Only an accepted start rebinds the loop stop() and faults post to
        self._loop = asyncio.get_running_loop()

        with self._stop_guard:
            stop_marker = self._stop_requests

        async with self._lock:
            await self._check_speech_authorization()
            return await self._acquire(stop_marker)

    async def _check_speech_authorization(self) -> None:
        status = self._permissions.speech_authorization
        if status is Authorization.UNKNOWN:
            status = await self._permissions.request_speech_authorization()
        if status is not Authorization.GRANTED:
            err = AuthorizationDenied("speech")
            log_event({
                "event_type": "CAPTURE_START_REJECTED",
                "error": err.code,
                "authorization": status.value,
            }, level="WARNING")
            self._publish(last_error=err)
            raise err

    async def _acquire(self, stop_marker: int) -> ActiveFormat:
        with self._stop_guard:
            self._session_id += 1
            session_id = self._session_id
        self._pending_failure = None

        self._transition(
            SessionState.ACQUIRING,
            session_id=session_id,
            last_result=None,
            last_error=None,
            route_mode=None,
        )

        with timed("capture_acquisition_ms", session_id=session_id) as scope:
            try:
                if not await self._permissions.request_microphone_access():
                    raise AuthorizationDenied("microphone")

                # Never layer a session over stale remnants
                await self._release_resources(session_id)

                fmt = await self._negotiator.negotiate()
                scope.details["route_mode"] = fmt.mode.value
                scope.details["sample_rate"] = fmt.sample_rate

                sink = self._sink_factory(self._on_sink_event)
                self._sink = sink
                self._queue = CaptureBufferQueue(
                    max_buffers=self._queue_max_buffers,
                    buffer_duration_s=fmt.buffer_duration_s,
                )
                self._buffer_ready = asyncio.Event()
                self._next_seq = 0

                await sink.start_stream(session_id, fmt)
                self._raise_if_failed()

                try:
                    self._source.start(
                        fmt,
                        self._make_buffer_handler(session_id),
                        self._make_fault_handler(session_id),
                    )
                except SourceStartError as exc:
                    raise SourceUnavailable(exc.reason) from exc

                with self._stop_guard:
                    stop_requested = self._stop_requests != stop_marker
                if stop_requested:
                    raise AcquisitionCancelled()

                self._raise_if_failed()
                if self._negotiator.active is None:
                    raise RouteUnavailable("interrupted")

            except AcquisitionCancelled as err:
                scope.outcome = err.code
                await self._stop_session(None)
                raise
            except SessionError as err:
                scope.outcome = err.code
                await self._rollback(err)
                raise
            except BaseException as exc:
                # Cancellation of start() or a collaborator bug: still roll back
                log_event({
                    "event_type": "CAPTURE_ACQUISITION_ABORTED",
                    "session_id": session_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                }, level="ERROR")
                await self._rollback(None)
                raise

        self._pump_task = asyncio.create_task(
            self._pump(session_id, sink, self._queue, self._buffer_ready)
        )
        self._transition(
            SessionState.STREAMING,
            is_recording=True,
            route_mode=fmt.mode,
        )
        return fmt

    def _raise_if_failed(self) -> None:
        err = self._pending_failure
        if err is not None:
            self._pending_failure = None
            raise err

    async def _rollback(self, err: SessionError | None) -> None:
        self._transition(SessionState.FAILED, is_recording=False, last_error=err)
        await self._release_resources(self._session_id)
        self._transition(SessionState.IDLE, route_mode=None)

    # ------------------------------------------------------------------
    # stop()
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """
        Request teardown. Fire-and-forget; callable from any thread.

        A stop issued during acquisition makes start() raise
        AcquisitionCancelled instead of entering STREAMING. The request
        targets the session current at call time; a stop issued while IDLE
        never reaches a session started afterwards.
        """
        session_id = self._request_stop()

        loop = self._loop
        if loop is None or loop.is_closed():
            # Never started: nothing is held
            return
        loop.call_soon_threadsafe(self._spawn, self._stop_locked(None, session_id))

    async def stop_and_wait(self) -> None:
        """Same teardown as stop(), awaited on the caller's loop."""
        await self._stop_locked(None, self._request_stop())

    def _request_stop(self) -> int:
        with self._stop_guard:
            self._stop_requests += 1
            return self._session_id

    async def _stop_locked(self, err: SessionError | None, session_id: int) -> None:
        async with self._lock:
            if (
                session_id != self._session_id
                or self._snapshot.state is SessionState.IDLE
            ):
                # Session already ended, or a newer one started since the request
                return
            await self._stop_session(err)

    async def _stop_session(self, err: SessionError | None) -> None:
        changes: dict[str, Any] = {"is_recording": False}
        if err is not None:
            changes["last_error"] = err
        self._transition(SessionState.STOPPING, **changes)
        await self._release_resources(self._session_id)
        self._transition(SessionState.IDLE, route_mode=None)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _release_resources(self, session_id: int) -> None:
        """
        Cancel sink, stop source, deactivate route. Each step best-effort.

        Never raises; failures are logged and kept in teardown_errors.
        """
        errors: list[str] = []

        pump = self._pump_task
        self._pump_task = None
        if pump is not None and not pump.done():
            pump.cancel()

        sink = self._sink
        self._sink = None
        if sink is not None:
            try:
                await sink.cancel(session_id)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                errors.append(self._step_failed("sink_cancel", exc, session_id))

        try:
            self._source.stop()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            errors.append(self._step_failed("source_stop", exc, session_id))

        try:
            self._negotiator.deactivate()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            errors.append(self._step_failed("route_deactivate", exc, session_id))

        if self._queue is not None:
            self._queue.clear()
        self._queue = None
        self._buffer_ready = None

        self._teardown_errors = tuple(errors)

    @staticmethod
    def _step_failed(step: str, exc: BaseException, session_id: int) -> str:
        log_event({
            "event_type": "CAPTURE_TEARDOWN_STEP_FAILED",
            "session_id": session_id,
            "step": step,
            "exception": type(exc).__name__,
            "message": str(exc),
        }, level="ERROR")
        return f"{step}: {exc!r}"

    # ------------------------------------------------------------------
    # Buffer path (PortAudio thread -> loop -> sink)
    # ------------------------------------------------------------------

    def _make_buffer_handler(self, session_id: int) -> Callable[[bytes], None]:
        loop = self._loop
        assert loop is not None

        def _on_buffer(pcm_bytes: bytes) -> None:
            loop.call_soon_threadsafe(self._enqueue_buffer, session_id, pcm_bytes, _now_ms())

        return _on_buffer

    def _make_fault_handler(self, session_id: int) -> Callable[[str], None]:
        def _on_fault(reason: str) -> None:
            self._post(self._fail_session, session_id, SourceUnavailable(reason))

        return _on_fault

    def _enqueue_buffer(self, session_id: int, pcm_bytes: bytes, ts_ms: int) -> None:
        queue = self._queue
        if session_id != self._session_id or queue is None:
            return

        self._next_seq += 1
        accepted = queue.enqueue(
            CaptureBuffer(
                sequence_num=self._next_seq,
                pcm_bytes=pcm_bytes,
                ts_ms=ts_ms,
                session_id=session_id,
            )
        )
        if not accepted:
            log_event({
                "event_type": "CAPTURE_BACKPRESSURE",
                "session_id": session_id,
                **queue.snapshot(),
            }, level="WARNING")
            self._fail_session(session_id, SourceUnavailable("backpressure"))
            return

        if self._buffer_ready is not None:
            self._buffer_ready.set()

    async def _pump(
        self,
        session_id: int,
        sink: TranscriptionSinkProtocol,
        queue: CaptureBufferQueue,
        ready: asyncio.Event,
    ) -> None:
        """Forward queued buffers to the sink in capture order."""
        while True:
            buf = queue.dequeue()
            if buf is None:
                ready.clear()
                await ready.wait()
                continue
            try:
                await sink.push_buffer(session_id, buf.sequence_num, buf.pcm_bytes)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._fail_session(session_id, RecognitionFailed(f"push_failed: {exc!r}"))
                return

    # ------------------------------------------------------------------
    # Sink events
    # ------------------------------------------------------------------

    async def _on_sink_event(self, event: SinkEvent) -> None:
        if event.session_id != self._session_id:
            log_event({
                "event_type": "SINK_EVENT_DROPPED_STALE",
                "sink_event": event.event_type.value,
                "event_session_id": event.session_id,
                "session_id": self._session_id,
            }, level="DEBUG")
            return

        if isinstance(event, TranscriptError):
            self._fail_session(event.session_id, RecognitionFailed(event.cause))
            return

        if self._snapshot.state is not SessionState.STREAMING:
            return

        if isinstance(event, (TranscriptPartial, TranscriptFinal)):
            result = TranscriptionResult(
                text=event.text,
                is_final=isinstance(event, TranscriptFinal),
            )
            log_event({
                "event_type": "CAPTURE_RESULT",
                "session_id": event.session_id,
                "is_final": result.is_final,
                "chars": len(result.text),
            }, level="DEBUG")
            self._publish(last_result=result)

    # ------------------------------------------------------------------
    # Faults (any thread)
    # ------------------------------------------------------------------

    def _on_route_interrupted(self, reason: str) -> None:
        log_event({
            "event_type": "CAPTURE_ROUTE_INTERRUPTED",
            "session_id": self._session_id,
            "reason": reason,
        }, level="WARNING")
        self._post(self._fail_session, self._session_id, RouteUnavailable("interrupted"))

    def _fail_session(self, session_id: int, err: SessionError) -> None:
        """Loop thread only."""
        if session_id != self._session_id:
            return

        state = self._snapshot.state
        if state is SessionState.ACQUIRING:
            # start() raises it before entering STREAMING
            if self._pending_failure is None:
                self._pending_failure = err
            return
        if state is not SessionState.STREAMING:
            return

        log_event({
            "event_type": "CAPTURE_SESSION_FAILED",
            "session_id": session_id,
            "error": err.code,
            "message": str(err),
        }, level="ERROR")
        self._spawn(self._stop_locked(err, session_id))

    def _post(self, fn: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(fn, *args)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Snapshot publication
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState, **changes: Any) -> None:
        old_state = self._snapshot.state
        if old_state is not new_state:
            log_event({
                "event_type": "CAPTURE_STATE",
                "from": old_state.value,
                "to": new_state.value,
                "session_id": changes.get("session_id", self._session_id),
            })
        self._publish(state=new_state, **changes)

    def _publish(self, **changes: Any) -> None:
        snap = dataclasses.replace(self._snapshot, **changes)
        self._snapshot = snap
        for observer in list(self._observers):
            self._notify(observer, snap)

    @staticmethod
    def _notify(observer: SnapshotObserver, snap: SessionSnapshot) -> None:
        try:
            observer(snap)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "CAPTURE_OBSERVER_FAILED",
                "exception": type(exc).__name__,
                "message": str(exc),
            }, level="ERROR")
