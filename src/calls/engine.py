"""Call-session negotiation engine.

All inputs (relay messages, transport callbacks, user commands and finished platform
operations) go through one queue and are dispatched one at a time. Platform
operations never run inside a dispatch: they are started as tasks, chained per
session so they hit the transport in submission order, and their outcome comes back
as an `OperationCompleted` event. A completion for a session that has since ended
is dropped.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from calls.errors import (
    CallError,
    ChannelUnavailableError,
    ConcurrentSessionError,
    InvalidCommandError,
    MalformedSignalError,
    MediaUnavailableError,
    NegotiationFailedError,
    StaleEventError,
)
from calls.events import (
    AcceptCall,
    ChannelStateChanged,
    ConnectionLost,
    EndCall,
    InitiateCall,
    LocalCandidateProduced,
    LocalMediaAcquired,
    OperationCompleted,
    RejectCall,
    RemoteMediaReceived,
    RetryLocalMedia,
    SelectTarget,
    SignalReceived,
    Step,
)
from calls.peer_registry import PeerRegistry
from calls.state import CallSession, CallState, EndReason, ErrorNotice, Phase, Role
from calls.transport import MediaPlatform
from signaling.base import BaseSignalingChannel
from signaling.messages import (
    ANSWER,
    CALL_ENDED,
    CALL_REJECTED,
    ICE_CANDIDATE,
    INBOUND_EVENTS,
    OFFER,
    PEER_LIST,
    AnswerMessage,
    CandidateMessage,
    IceCandidate,
    OfferMessage,
    SessionDescription,
    TerminationMessage,
    answer_payload,
    candidate_payload,
    offer_payload,
    parse_payload,
    parse_peer_list,
    termination_payload,
)

LOGGER = logging.getLogger(__name__)

StateListener = Callable[[CallState], None]
ErrorListener = Callable[[CallError], None]


class SessionEngine:
    def __init__(
        self,
        channel: BaseSignalingChannel,
        platform: MediaPlatform,
        *,
        local_id: str | None = None,
    ) -> None:
        self._channel = channel
        self._platform = platform
        self.local_id = local_id or channel.local_id
        self._registry = PeerRegistry(self.local_id)

        self._queue: asyncio.Queue[tuple[object, asyncio.Future | None]] = asyncio.Queue()
        self._runner: asyncio.Task | None = None
        self._ops: set[asyncio.Task] = set()

        self._session: CallSession | None = None
        self._session_ids = itertools.count(1)
        self._local_media: Any = None
        self._media_pending = False
        self._selected_target: str | None = None
        self._channel_available = channel.available
        self._last_error: ErrorNotice | None = None
        self._end_reason: EndReason | None = None

        self._state_listeners: list[StateListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._published: CallState | None = None

        self._handlers: dict[type, Callable[[Any], Awaitable[Any]]] = {
            SelectTarget: self._on_select_target,
            InitiateCall: self._on_initiate_call,
            AcceptCall: self._on_accept_call,
            RejectCall: self._on_reject_call,
            EndCall: self._on_end_call,
            RetryLocalMedia: self._on_retry_local_media,
            SignalReceived: self._on_signal,
            ChannelStateChanged: self._on_channel_state,
            LocalCandidateProduced: self._on_local_candidate,
            RemoteMediaReceived: self._on_remote_media,
            ConnectionLost: self._on_connection_lost,
            OperationCompleted: self._on_operation_completed,
            LocalMediaAcquired: self._on_local_media_acquired,
        }
        self._signal_handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            PEER_LIST: self._receive_peer_list,
            OFFER: self._receive_offer,
            ANSWER: self._receive_answer,
            ICE_CANDIDATE: self._receive_ice_candidate,
            CALL_REJECTED: self._receive_call_rejected,
            CALL_ENDED: self._receive_call_ended,
        }

    # ------------------------------------------------------------------
    # Lifecycle

    async def connect(self) -> None:
        """Wire the channel, start dispatching, reach the relay and open local media.

        Relay or media failures are reported, not raised: the engine stays up in a
        degraded state and the user can retry.
        """

        for event in INBOUND_EVENTS:
            self._channel.on(event, functools.partial(self._post_signal, event))
        self._channel.set_state_listener(self._post_channel_state)
        self.start()

        try:
            await self._channel.connect()
        except ChannelUnavailableError as exc:
            LOGGER.warning("Relay unavailable: %s", exc.detail)
            self._report(exc)
        self.post(RetryLocalMedia())

    async def disconnect(self) -> None:
        if self._runner is not None and self._session is not None:
            try:
                await self.execute(EndCall())
            except CallError as exc:
                LOGGER.warning("Hang-up during disconnect incomplete: %s", exc.detail)

        for event in INBOUND_EVENTS:
            self._channel.off(event)
        self._channel.set_state_listener(None)
        await self._channel.disconnect()

        await self.stop()

        media, self._local_media = self._local_media, None
        if media is not None:
            await self._platform.release_local_media(media)

    def start(self) -> None:
        if self._runner is None:
            self._runner = asyncio.create_task(self._run(), name="session-engine")

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        tasks = [t for t in self._ops if not t.done()]
        if runner is not None:
            tasks.append(runner)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._ops.clear()

    # ------------------------------------------------------------------
    # Observation

    @property
    def state(self) -> CallState:
        session = self._session
        phase = session.phase if session is not None else Phase.IDLE
        return CallState(
            phase=phase,
            local_id=self.local_id,
            peers=tuple(self._registry.list()),
            selected_target=self._selected_target,
            incoming_call_from=session.peer_id if phase is Phase.RINGING_INCOMING else None,
            remote_peer=session.peer_id if session is not None else None,
            remote_media_stream=session.remote_stream if phase is Phase.CONNECTED else None,
            local_media_ready=self._local_media is not None,
            channel_available=self._channel_available,
            last_error=self._last_error,
            end_reason=self._end_reason,
        )

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def peers(self) -> list[str]:
        return self._registry.list()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return functools.partial(self._unsubscribe, self._state_listeners, listener)

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        self._error_listeners.append(listener)
        return functools.partial(self._unsubscribe, self._error_listeners, listener)

    @staticmethod
    def _unsubscribe(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # Commands

    async def select_target(self, peer_id: str | None) -> None:
        await self.execute(SelectTarget(peer_id))

    async def initiate_call(self, peer_id: str | None = None) -> None:
        await self.execute(InitiateCall(peer_id))

    async def accept_call(self) -> None:
        await self.execute(AcceptCall())

    async def reject_call(self) -> None:
        await self.execute(RejectCall())

    async def end_call(self) -> None:
        await self.execute(EndCall())

    async def retry_local_media(self) -> None:
        await self.execute(RetryLocalMedia())

    async def execute(self, command: object) -> Any:
        """Queue a command and wait for its dispatch. Refusals raise CallError."""

        if self._runner is None:
            raise RuntimeError("Session engine is not running; call connect() first")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((command, future))
        return await future

    def post(self, event: object) -> None:
        self._queue.put_nowait((event, None))

    async def drain(self) -> None:
        """Wait until the queue is empty and no platform operation is outstanding."""

        if self._runner is None:
            raise RuntimeError("Session engine is not running; call connect() first")
        while True:
            await _settle()
            await self._queue.join()
            pending = [t for t in self._ops if not t.done()]
            if pending:
                await asyncio.wait(pending)
                continue
            await _settle()
            if self._queue.empty() and not any(not t.done() for t in self._ops):
                return

    # ------------------------------------------------------------------
    # Dispatch

    async def _run(self) -> None:
        while True:
            event, future = await self._queue.get()
            try:
                await self._dispatch(event, future)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: object, future: asyncio.Future | None) -> None:
        handler = self._handlers.get(type(event))
        try:
            if handler is None:
                raise TypeError(f"Unsupported engine input: {event!r}")
            result = await handler(event)
        except StaleEventError as exc:
            LOGGER.debug("Ignoring stale %s: %s", type(event).__name__, exc.detail)
            _resolve(future, None)
        except CallError as exc:
            LOGGER.warning("%s: %s", exc.kind, exc.detail)
            self._report(exc)
            _reject(future, exc)
        except Exception as exc:
            LOGGER.exception("Dispatch of %s failed", type(event).__name__)
            _reject(future, exc)
        else:
            _resolve(future, result)
        self._publish()

    def _post_signal(self, event: str, payload: Any) -> None:
        self.post(SignalReceived(event, payload))

    def _post_channel_state(self, available: bool) -> None:
        self.post(ChannelStateChanged(available))

    # ------------------------------------------------------------------
    # Command handlers

    async def _on_select_target(self, command: SelectTarget) -> None:
        if command.peer_id is not None and command.peer_id not in self._registry:
            raise InvalidCommandError(f"Unknown peer {command.peer_id}.")
        self._selected_target = command.peer_id

    async def _on_initiate_call(self, command: InitiateCall) -> None:
        if self._session is not None:
            raise ConcurrentSessionError()
        target = command.peer_id or self._selected_target
        if not target:
            raise InvalidCommandError("No peer selected.")
        if target == self.local_id:
            raise InvalidCommandError("Cannot call yourself.")
        if self._local_media is None:
            raise MediaUnavailableError()
        if not self._channel_available:
            raise ChannelUnavailableError()

        self._selected_target = target
        session = self._open_session(Role.CALLER, target, Phase.CALLING)
        session.connection.add_local_media(self._local_media)
        connection = session.connection
        self._schedule(session, Step.OFFER, lambda: _produce_offer(connection))
        LOGGER.info("Calling peer: %s", target)

    async def _on_accept_call(self, command: AcceptCall) -> None:
        session = self._session
        if session is None or session.phase is not Phase.RINGING_INCOMING:
            raise InvalidCommandError("No incoming call to accept.")
        if self._local_media is None:
            raise MediaUnavailableError()
        if not self._channel_available:
            raise ChannelUnavailableError()

        session.connection.add_local_media(self._local_media)
        session.phase = Phase.NEGOTIATING
        connection = session.connection
        self._schedule(session, Step.ANSWER, lambda: _produce_answer(connection))
        LOGGER.info("Call accepted with %s", session.peer_id)

    async def _on_reject_call(self, command: RejectCall) -> None:
        session = self._session
        if session is None or session.phase is not Phase.RINGING_INCOMING:
            raise InvalidCommandError("No incoming call to reject.")
        await self._teardown(session, EndReason.REJECTED_LOCALLY)
        LOGGER.info("Call rejected from %s", session.peer_id)
        await self._send(CALL_REJECTED, termination_payload(session.peer_id))

    async def _on_end_call(self, command: EndCall) -> None:
        session = self._session
        if session is None:
            return
        await self._teardown(session, EndReason.LOCAL_HANGUP)
        LOGGER.info("Call ended.")
        await self._send(CALL_ENDED, termination_payload(session.peer_id))

    async def _on_retry_local_media(self, command: RetryLocalMedia) -> None:
        if self._local_media is not None or self._media_pending:
            return
        self._media_pending = True
        task = asyncio.create_task(self._platform.acquire_local_media())
        self._track(task, lambda t: LocalMediaAcquired(*_outcome(t)))

    async def _on_local_media_acquired(self, event: LocalMediaAcquired) -> None:
        self._media_pending = False
        if event.error is not None:
            if isinstance(event.error, MediaUnavailableError):
                raise event.error
            raise MediaUnavailableError(f"Failed to get user media: {event.error}") from event.error
        self._local_media = event.media
        LOGGER.info("Local stream obtained.")

    async def _on_channel_state(self, event: ChannelStateChanged) -> None:
        self._channel_available = event.available

    # ------------------------------------------------------------------
    # Relay messages

    async def _on_signal(self, event: SignalReceived) -> None:
        handler = self._signal_handlers.get(event.event)
        if handler is None:
            raise StaleEventError(f"unhandled event {event.event}")
        await handler(event.payload)

    async def _receive_peer_list(self, payload: Any) -> None:
        peers = self._registry.replace(parse_peer_list(payload))
        LOGGER.info("Updated peer list: %s", list(peers))
        session = self._session
        if session is not None and session.peer_id not in self._registry:
            # The peer left the relay, so no call-ended will arrive.
            LOGGER.info("Peer %s left; ending the call.", session.peer_id)
            await self._teardown(session, EndReason.REMOTE_HANGUP)
        if self._selected_target is not None and self._selected_target not in self._registry:
            self._selected_target = None

    async def _receive_offer(self, payload: Any) -> None:
        message = parse_payload(OfferMessage, payload, event=OFFER)
        sender = message.sender
        if sender == self.local_id:
            raise StaleEventError("offer from self")

        if self._session is not None:
            LOGGER.warning(
                "Rejecting offer from %s: call with %s in progress", sender, self._session.peer_id
            )
            await self._notify_quietly(CALL_REJECTED, sender)
            raise ConcurrentSessionError(f"Rejected incoming call from {sender}: already in a call.")

        LOGGER.info("Incoming offer from %s", sender)
        try:
            session = self._open_session(Role.CALLEE, sender, Phase.RINGING_INCOMING)
        except NegotiationFailedError:
            await self._notify_quietly(CALL_REJECTED, sender)
            raise
        connection = session.connection
        offer = message.offer
        self._schedule(session, Step.REMOTE_OFFER, lambda: connection.set_remote_description(offer))

    async def _receive_answer(self, payload: Any) -> None:
        message = parse_payload(AnswerMessage, payload, event=ANSWER)
        session = self._session
        if session is None or session.role is not Role.CALLER:
            raise MalformedSignalError("answer: no outgoing call is waiting for an answer")
        if message.sender is not None and message.sender != session.peer_id:
            raise StaleEventError(f"answer from unrelated peer {message.sender}")
        if session.phase is not Phase.CALLING or session.answer_received:
            raise StaleEventError("duplicate answer")

        LOGGER.info("Received valid answer from %s", session.peer_id)
        session.answer_received = True
        connection = session.connection
        answer = message.answer
        self._schedule(session, Step.REMOTE_ANSWER, lambda: connection.set_remote_description(answer))

    async def _receive_ice_candidate(self, payload: Any) -> None:
        message = parse_payload(CandidateMessage, payload, event=ICE_CANDIDATE)
        session = self._session
        if session is None:
            raise StaleEventError("candidate with no active call")
        if message.sender is not None and message.sender != session.peer_id:
            raise StaleEventError(f"candidate from unrelated peer {message.sender}")

        if session.remote_description_set:
            self._apply_candidate(session, message.candidate)
        else:
            session.inbound.enqueue(message.candidate)
            LOGGER.debug("ICE candidate queued (%d waiting).", len(session.inbound))

    async def _receive_call_rejected(self, payload: Any) -> None:
        message = parse_payload(TerminationMessage, payload or {}, event=CALL_REJECTED)
        if message.target is not None and message.target != self.local_id:
            raise StaleEventError(f"rejection addressed to {message.target}")
        session = self._active_session_for(message.sender)
        await self._teardown(session, EndReason.REJECTED_BY_PEER)
        LOGGER.info("Call rejected by %s.", session.peer_id)

    async def _receive_call_ended(self, payload: Any) -> None:
        message = parse_payload(TerminationMessage, payload or {}, event=CALL_ENDED)
        if message.target != self.local_id:
            raise StaleEventError(f"hang-up addressed to {message.target}")
        session = self._active_session_for(message.sender)
        await self._teardown(session, EndReason.REMOTE_HANGUP)
        LOGGER.info("The other peer has ended the call.")

    def _active_session_for(self, sender: str | None) -> CallSession:
        session = self._session
        if session is None:
            raise StaleEventError("no active call")
        if sender is not None and sender != session.peer_id:
            raise StaleEventError(f"sent by unrelated peer {sender}")
        return session

    # ------------------------------------------------------------------
    # Transport callbacks and operation results

    async def _on_local_candidate(self, event: LocalCandidateProduced) -> None:
        session = self._current(event.session_id)
        if not session.local_description_sent:
            session.outbound.enqueue(event.candidate)
            return
        await self._send_candidate(session, event.candidate)

    async def _on_remote_media(self, event: RemoteMediaReceived) -> None:
        session = self._current(event.session_id)
        LOGGER.info("Remote stream received from %s", session.peer_id)
        session.remote_stream = event.stream
        self._maybe_connect(session)

    async def _on_connection_lost(self, event: ConnectionLost) -> None:
        session = self._current(event.session_id)
        LOGGER.error("Connection to %s lost: %s", session.peer_id, event.reason)
        await self._teardown(session, EndReason.FAILED)
        await self._notify_quietly(CALL_ENDED, session.peer_id)
        raise NegotiationFailedError(f"Connection to {session.peer_id} lost: {event.reason}")

    async def _on_operation_completed(self, event: OperationCompleted) -> None:
        session = self._current(event.session_id)
        if event.error is not None:
            await self._operation_failed(session, event)
            return

        if event.step is Step.OFFER:
            if session.phase is not Phase.CALLING:
                raise StaleEventError("offer produced after the call moved on")
            await self._send_description(session, OFFER, offer_payload(session.peer_id, event.result))

        elif event.step is Step.REMOTE_OFFER:
            LOGGER.info("Offer set to remote description.")
            self._remote_description_applied(session)

        elif event.step is Step.ANSWER:
            if session.phase is not Phase.NEGOTIATING:
                raise StaleEventError("answer produced after the call moved on")
            await self._send_description(session, ANSWER, answer_payload(session.peer_id, event.result))
            self._maybe_connect(session)

        elif event.step is Step.REMOTE_ANSWER:
            if session.phase is not Phase.CALLING:
                raise StaleEventError("answer applied after the call moved on")
            LOGGER.info("Remote description set successfully.")
            self._remote_description_applied(session)
            session.phase = Phase.NEGOTIATING
            self._maybe_connect(session)

    async def _operation_failed(self, session: CallSession, event: OperationCompleted) -> None:
        if event.step is Step.CANDIDATE:
            LOGGER.warning("Adding ICE candidate failed: %s", event.error)
            return

        LOGGER.error("Negotiation step %s failed: %s", event.step.value, event.error)
        await self._teardown(session, EndReason.FAILED)
        if event.step is Step.REMOTE_OFFER:
            await self._notify_quietly(CALL_REJECTED, session.peer_id)
        else:
            await self._notify_quietly(CALL_ENDED, session.peer_id)
        raise NegotiationFailedError(f"{event.step.value} failed: {event.error}") from event.error

    def _remote_description_applied(self, session: CallSession) -> None:
        session.remote_description_set = True
        drained = session.inbound.drain_into(lambda c: self._apply_candidate(session, c))
        if drained:
            LOGGER.info("Applied %d queued ICE candidates.", drained)

    def _maybe_connect(self, session: CallSession) -> None:
        if (
            session.phase is Phase.NEGOTIATING
            and session.local_description_sent
            and session.remote_stream is not None
        ):
            session.phase = Phase.CONNECTED
            LOGGER.info("Call connected with %s", session.peer_id)

    # ------------------------------------------------------------------
    # Helpers

    def _current(self, session_id: int) -> CallSession:
        session = self._session
        if session is None or session.id != session_id:
            raise StaleEventError(f"session {session_id} is over")
        return session

    def _open_session(self, role: Role, peer_id: str, phase: Phase) -> CallSession:
        session_id = next(self._session_ids)
        try:
            connection = self._platform.create_connection(
                lambda candidate: self.post(LocalCandidateProduced(session_id, candidate)),
                lambda stream: self.post(RemoteMediaReceived(session_id, stream)),
                lambda reason: self.post(ConnectionLost(session_id, reason)),
            )
        except Exception as exc:
            raise NegotiationFailedError(f"Could not create peer connection: {exc}") from exc

        session = CallSession(id=session_id, role=role, peer_id=peer_id, connection=connection, phase=phase)
        self._session = session
        self._end_reason = None
        self._last_error = None
        return session

    async def _teardown(self, session: CallSession, reason: EndReason) -> None:
        if self._session is session:
            self._session = None
            self._selected_target = None
            self._end_reason = reason
        session.inbound.clear()
        session.outbound.clear()
        session.remote_stream = None
        if session.closed:
            return
        session.closed = True
        try:
            await session.connection.close()
        except Exception:
            LOGGER.exception("Closing peer connection failed")

    def _schedule(self, session: CallSession, step: Step, operation: Callable[[], Awaitable[Any]]) -> None:
        previous = session.last_operation

        async def run() -> Any:
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            if session.closed:
                return None
            return await operation()

        task = asyncio.create_task(run())
        session.last_operation = task
        self._track(task, lambda t: OperationCompleted(session.id, step, *_outcome(t)))

    def _track(self, task: asyncio.Task, make_event: Callable[[asyncio.Task], object]) -> None:
        self._ops.add(task)

        def done(t: asyncio.Task) -> None:
            self._ops.discard(t)
            if not t.cancelled():
                self.post(make_event(t))

        task.add_done_callback(done)

    def _apply_candidate(self, session: CallSession, candidate: IceCandidate) -> None:
        connection = session.connection
        self._schedule(session, Step.CANDIDATE, lambda: connection.add_ice_candidate(candidate))

    async def _send_description(self, session: CallSession, event: str, payload: dict[str, Any]) -> None:
        try:
            await self._send(event, payload)
        except ChannelUnavailableError:
            await self._teardown(session, EndReason.FAILED)
            raise
        session.local_description_sent = True
        LOGGER.info("Sent %s to %s", event, session.peer_id)

        pending: list[IceCandidate] = []
        session.outbound.drain_into(pending.append)
        for candidate in pending:
            await self._send_candidate(session, candidate)

    async def _send_candidate(self, session: CallSession, candidate: IceCandidate) -> None:
        try:
            await self._send(ICE_CANDIDATE, candidate_payload(session.peer_id, candidate))
        except ChannelUnavailableError as exc:
            LOGGER.warning("ICE candidate for %s not sent: %s", session.peer_id, exc.detail)
            return
        LOGGER.debug("ICE candidate sent to: %s", session.peer_id)

    async def _send(self, event: str, payload: Any) -> None:
        await self._channel.send(event, payload)

    async def _notify_quietly(self, event: str, target: str) -> None:
        try:
            await self._send(event, termination_payload(target))
        except ChannelUnavailableError as exc:
            LOGGER.warning("Could not notify %s with %s: %s", target, event, exc.detail)

    def _report(self, error: CallError) -> None:
        self._last_error = ErrorNotice(kind=error.kind, detail=error.detail)
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception:
                LOGGER.exception("Error listener failed")

    def _publish(self) -> None:
        state = self.state
        if state == self._published:
            return
        self._published = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                LOGGER.exception("State listener failed")


async def _produce_offer(connection) -> SessionDescription:
    offer = await connection.create_offer()
    return await connection.set_local_description(offer)


async def _produce_answer(connection) -> SessionDescription:
    answer = await connection.create_answer()
    return await connection.set_local_description(answer)


def _outcome(task: asyncio.Task) -> tuple[Any, BaseException | None]:
    error = task.exception()
    if error is not None:
        return None, error
    return task.result(), None


async def _settle() -> None:
    # Let call_soon callbacks (relay deliveries, task done callbacks) run.
    for _ in range(5):
        await asyncio.sleep(0)


def _resolve(future: asyncio.Future | None, result: Any) -> None:
    if future is not None and not future.done():
        future.set_result(result)


def _reject(future: asyncio.Future | None, error: BaseException) -> None:
    if future is not None and not future.done():
        future.set_exception(error)
