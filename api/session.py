"""Protocol session: one command invocation over one connection.

A session sends exactly one top-level request and reads exactly one
response. When a Search or SwitchTo comes back with several candidates the
session suspends in AWAITING_DISAMBIGUATION, keeping the connection open,
until the caller either selects a candidate (which sends a second SwitchTo)
or closes it.

    IDLE -> AWAITING_FIRST_RESPONSE -> DONE
                                    -> AWAITING_DISAMBIGUATION -> DONE

The transport is closed exactly once on every path out of the session,
including errors and cancellation.
"""

import asyncio
import threading
from api.transport import Transport, WebSocketTransport
from collections.abc import Awaitable, Callable
from config import CONFIRM_SWITCH, OPEN_TIMEOUT, RECEIVE_TIMEOUT, SERVER_HOST, SERVER_PORT
from contextlib import asynccontextmanager, suppress
from core.errors import (
    MissingArgument,
    ProtocolError,
    ProtocolErrorReason,
    RemoteControlError,
    SelectionError,
    SessionStateError,
    TransportError,
)
from core.logging import log_error, log_frame, log_protocol_event, session_logger, start_action
from core.models import CriterionRequest, MatchCriterion, Request, Response, ResponseOutcome, SwitchTo
from core.resolver import Classification, MultipleMatches, classify
from dataclasses import dataclass
from enum import Enum
from functools import partial


class SessionState(str, Enum):
    IDLE = 'Idle'
    AWAITING_FIRST_RESPONSE = 'AwaitingFirstResponse'
    AWAITING_DISAMBIGUATION = 'AwaitingDisambiguation'
    DONE = 'Done'


@dataclass(frozen=True)
class SwitchSent:
    """The disambiguating SwitchTo was sent without waiting for a reply."""

    criterion: MatchCriterion


@dataclass(frozen=True)
class SwitchConfirmed:
    message: str
    criterion: MatchCriterion


@dataclass(frozen=True)
class SwitchRejected:
    message: str
    criterion: MatchCriterion


SwitchOutcome = SwitchSent | SwitchConfirmed | SwitchRejected


@dataclass(frozen=True)
class SessionResult:
    """What one command invocation produced, for presentation."""

    outcome: Classification
    switch: SwitchOutcome | None = None


class ProtocolSession:
    """Drives the request/response exchange and the disambiguation round."""

    def __init__(
        self,
        transport: Transport,
        receive_timeout: float | None = RECEIVE_TIMEOUT,
        confirm_switch: bool = CONFIRM_SWITCH,
    ):
        """Initialize the session.

        Args:
            transport: Connected transport; the session takes ownership and closes it
            receive_timeout: Seconds to wait for each response, None waits forever
            confirm_switch: Read the server's reply to the disambiguating SwitchTo
                instead of sending it fire-and-forget
        """
        self._transport = transport
        self.receive_timeout = receive_timeout
        self.confirm_switch = confirm_switch
        self.state = SessionState.IDLE
        self.request: Request | None = None
        self.outcome: Classification | None = None
        self._closed = False

    async def __aenter__(self) -> 'ProtocolSession':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.close()
        else:
            await self._close_after_failure()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def candidates(self):
        """Candidates awaiting a selection, in server order."""
        if isinstance(self.outcome, MultipleMatches):
            return self.outcome.candidates
        return ()

    async def send(self, request: Request) -> Classification:
        """Send the request and classify the server's single response.

        Returns:
            Acknowledgement or SingleMatch (session is DONE), or MultipleMatches
            (session is AWAITING_DISAMBIGUATION when the request targets tracks)

        Raises:
            MissingArgument: Search/SwitchTo with an empty criterion, nothing is sent
            TransportError: send or receive failed, or no response in time
            ProtocolError: empty or malformed response
        """
        self._require(SessionState.IDLE, 'send a request')
        self.request = request

        with start_action(session_logger, "protocol_session", request=request.tag):
            async with self._closing_on_failure():
                if isinstance(request, CriterionRequest) and request.criterion.is_empty():
                    raise MissingArgument(f'{request.tag} requires a non-empty match criterion')

                await self._send_frame(request)
                self._transition(SessionState.AWAITING_FIRST_RESPONSE)
                response = await self._receive_response()
                outcome = classify(response, request.targets_tracks)

            self.outcome = outcome
            log_protocol_event("response_classified", level="INFO", outcome=type(outcome).__name__)

            if isinstance(outcome, MultipleMatches):
                self._transition(SessionState.AWAITING_DISAMBIGUATION)
            else:
                await self.close()
            return outcome

    async def select(self, index: int) -> SwitchOutcome:
        """Resolve the pending candidate list by switching to candidate ``index``.

        Raises:
            SelectionError: index outside the candidate list, nothing is sent
        """
        self._require(SessionState.AWAITING_DISAMBIGUATION, 'select a candidate')
        candidates = self.candidates

        with start_action(session_logger, "disambiguation", index=index, candidates=len(candidates)):
            async with self._closing_on_failure():
                if not 0 <= index < len(candidates):
                    raise SelectionError(index, len(candidates))

                criterion = candidates[index].to_criterion()
                if criterion.is_empty():
                    raise ProtocolError(ProtocolErrorReason.MALFORMED, f'Candidate {index} has no identifying fields')

                await self._send_frame(SwitchTo(criterion=criterion))

                if self.confirm_switch:
                    response = await self._receive_response()
                    result = self._confirmation(response, criterion)
                else:
                    # The server is trusted to apply the switch, no reply is read
                    result = SwitchSent(criterion)

            log_protocol_event("switch_resolved", level="INFO", result=type(result).__name__)
            await self.close()
            return result

    async def close(self) -> None:
        """End the session and close the transport. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._transition(SessionState.DONE)
        await self._transport.close()

    def _require(self, state: SessionState, operation: str) -> None:
        if self.state is not state:
            raise SessionStateError(f'Cannot {operation} while the session is {self.state.value}')

    def _transition(self, new_state: SessionState) -> None:
        if new_state is self.state:
            return
        log_protocol_event(
            "state_transition", level="DEBUG", old_state=self.state.value, new_state=new_state.value
        )
        self.state = new_state

    async def _send_frame(self, request: Request) -> None:
        payload = request.encode()
        log_frame("sent", payload)
        await self._transport.send(payload)

    async def _receive_response(self) -> Response:
        try:
            raw = await asyncio.wait_for(self._transport.recv(), timeout=self.receive_timeout)
        except TimeoutError as e:
            raise TransportError(f'Timeout: no response within {self.receive_timeout}s') from e
        log_frame("received", raw if isinstance(raw, str) else repr(raw))
        return Response.decode(raw)

    def _confirmation(self, response: Response, criterion: MatchCriterion) -> SwitchOutcome:
        if response.outcome is ResponseOutcome.REJECTED:
            return SwitchRejected(response.message, criterion)
        if isinstance(classify(response, True), MultipleMatches):
            return SwitchRejected(response.message, criterion)
        return SwitchConfirmed(response.message, criterion)

    @asynccontextmanager
    async def _closing_on_failure(self):
        try:
            yield
        except SelectionError as e:
            log_protocol_event("selection_rejected", level="WARNING", index=e.index, count=e.count)
            await self._close_after_failure()
            raise
        except RemoteControlError as e:
            log_error(session_logger, e, state=self.state.value)
            await self._close_after_failure()
            raise
        except (Exception, asyncio.CancelledError):
            await self._close_after_failure()
            raise

    async def _close_after_failure(self) -> None:
        # The failure already in flight takes precedence over a failing close
        try:
            await self.close()
        except TransportError as e:
            log_protocol_event("close_failed", level="WARNING", error=str(e))


Chooser = Callable[[MultipleMatches], int | None]
TransportFactory = Callable[[], Awaitable[Transport]]


async def _ask_chooser(chooser: Chooser, outcome: MultipleMatches) -> int | None:
    """Run a blocking chooser on a daemon thread and await its answer.

    After cancellation the thread is abandoned, so shutdown never waits for a
    pending prompt.
    """
    loop = asyncio.get_running_loop()
    answer = loop.create_future()

    def deliver(setter, value):
        if not answer.done():
            setter(value)

    def report(setter, value):
        # The loop is gone once the session was cancelled and asyncio.run returned
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(deliver, setter, value)

    def worker():
        try:
            index = chooser(outcome)
        except Exception as e:
            report(answer.set_exception, e)
        else:
            report(answer.set_result, index)

    threading.Thread(target=worker, name="ChooserThread", daemon=True).start()
    return await answer


async def run_command(
    request: Request,
    *,
    host: str = SERVER_HOST,
    port: int = SERVER_PORT,
    choice_index: int | None = None,
    chooser: Chooser | None = None,
    receive_timeout: float | None = RECEIVE_TIMEOUT,
    open_timeout: float | None = OPEN_TIMEOUT,
    confirm_switch: bool = CONFIRM_SWITCH,
    transport_factory: TransportFactory | None = None,
) -> SessionResult:
    """Run one command invocation end to end.

    With MultipleMatches, a supplied ``choice_index`` resolves the list right
    away. Otherwise ``chooser`` (a blocking prompt, run in a worker thread) is
    asked for an index while the session stays open. Without either, or when
    the chooser returns None, the session ends and the candidates are returned
    so the caller can re-invoke with an index.

    Args:
        request: Encoded request to send
        host: Server hostname
        port: Server port
        choice_index: Zero-based selection for a candidate list
        chooser: Interactive selection callback
        receive_timeout: Seconds to wait for each response
        open_timeout: Seconds allowed to connect
        confirm_switch: Wait for the server's reply to the disambiguating SwitchTo
        transport_factory: Coroutine factory returning a connected transport

    Returns:
        SessionResult with the classified outcome and, if a candidate was chosen,
        the switch outcome
    """
    if transport_factory is None:
        transport_factory = partial(WebSocketTransport.open, host, port, open_timeout=open_timeout)
    transport = await transport_factory()

    async with ProtocolSession(transport, receive_timeout=receive_timeout, confirm_switch=confirm_switch) as session:
        outcome = await session.send(request)

        if session.state is not SessionState.AWAITING_DISAMBIGUATION:
            if choice_index is not None:
                log_protocol_event(
                    "choice_index_ignored",
                    level="INFO",
                    description=f"Ignoring choice index {choice_index}: the response did not present candidates",
                )
            return SessionResult(outcome)

        index = choice_index
        if index is None and chooser is not None:
            index = await _ask_chooser(chooser, outcome)
        if index is None:
            return SessionResult(outcome)

        return SessionResult(outcome, await session.select(index))
