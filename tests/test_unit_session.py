"""Unit tests for the protocol session state machine.

The session is driven against a scripted in-memory transport, so every test
can assert exactly what was sent and how often the transport was closed.
"""

import asyncio
import pytest
import threading
import time
from api.session import (
    ProtocolSession,
    SessionResult,
    SessionState,
    SwitchConfirmed,
    SwitchRejected,
    SwitchSent,
    run_command,
)
from config import TEST_TIMEOUT
from core.errors import (
    MissingArgument,
    ProtocolError,
    ProtocolErrorReason,
    SelectionError,
    SessionStateError,
    TransportError,
)
from core.models import MatchCriterion, Play, Search, SwitchTo, TrackRecord
from core.resolver import Acknowledgement, MultipleMatches, SingleMatch
from tests.helpers.scripted import ScriptedTransport, make_track, response_json


def run(coro):
    return asyncio.run(coro)


def search_artist(name='Bob'):
    return Search(criterion=MatchCriterion(artist=name))


def command(transport, request, **kwargs):
    async def factory():
        return transport

    return run(run_command(request, transport_factory=factory, **kwargs))


class TestScenarios:
    """End-to-end behaviour of one command invocation."""

    def test_play_is_acknowledged(self):
        """Scenario A: Play -> "Now playing"."""
        transport = ScriptedTransport([response_json('Now playing')])

        result = command(transport, Play())

        assert result == SessionResult(Acknowledgement('Now playing'))
        assert transport.sent_json == ['Play']
        assert transport.close_count == 1

    def test_search_single_match(self, single_result_transport):
        """Scenario B: Search{title} -> one track."""
        request = Search(criterion=MatchCriterion(title='Rocker Song'))

        result = command(single_result_transport, request)

        assert isinstance(result.outcome, SingleMatch)
        assert result.outcome.track == TrackRecord(**make_track())
        assert result.switch is None
        assert single_result_transport.sent_json == [{'Search': {'title': 'Rocker Song'}}]
        assert single_result_transport.close_count == 1

    def test_multiple_matches_without_index(self, multiple_results_transport, three_tracks):
        """Scenario C: candidates are surfaced and nothing else is sent."""
        result = command(multiple_results_transport, search_artist())

        assert isinstance(result.outcome, MultipleMatches)
        assert result.outcome.candidates == tuple(TrackRecord(**t) for t in three_tracks)
        assert result.switch is None
        assert len(multiple_results_transport.sent) == 1
        assert multiple_results_transport.close_count == 1

    def test_multiple_matches_with_index(self, multiple_results_transport, three_tracks):
        """Scenario D: index 1 sends SwitchTo(criterion of T1) and reads no reply."""
        result = command(multiple_results_transport, search_artist(), choice_index=1)

        expected = dict(three_tracks[1])
        del expected['album_artist']  # empty in the record, so unset in the criterion
        assert multiple_results_transport.sent_json[1] == {'SwitchTo': expected}
        assert result.switch == SwitchSent(TrackRecord(**three_tracks[1]).to_criterion())
        assert multiple_results_transport.recv_count == 1
        assert multiple_results_transport.close_count == 1

    def test_index_out_of_range(self, multiple_results_transport):
        """Scenario E: index 5 of 3 -> SelectionError, no second send."""
        with pytest.raises(SelectionError) as excinfo:
            command(multiple_results_transport, search_artist(), choice_index=5)

        assert excinfo.value.index == 5
        assert excinfo.value.count == 3
        assert len(multiple_results_transport.sent) == 1
        assert multiple_results_transport.close_count == 1

    @pytest.mark.parametrize('index', [3, -1])
    def test_boundary_indexes_are_rejected(self, multiple_results_transport, index):
        with pytest.raises(SelectionError):
            command(multiple_results_transport, search_artist(), choice_index=index)
        assert len(multiple_results_transport.sent) == 1

    def test_index_is_ignored_without_candidates(self, single_result_transport):
        result = command(single_result_transport, search_artist(), choice_index=2)

        assert isinstance(result.outcome, SingleMatch)
        assert len(single_result_transport.sent) == 1

    def test_explicit_outcome_on_play_never_triggers_a_switch(self):
        tracks = [make_track(title='a'), make_track(title='b')]
        transport = ScriptedTransport([response_json('Status', tracks, outcome='multiple')])

        result = command(transport, Play(), choice_index=0)

        assert result == SessionResult(Acknowledgement('Status'))
        assert transport.sent_json == ['Play']
        assert transport.close_count == 1


class TestInteractiveChooser:
    """Disambiguation inside a single session."""

    def test_chooser_resolves_in_same_session(self, multiple_results_transport):
        seen = []

        def chooser(outcome):
            seen.append(outcome)
            return 0

        result = command(multiple_results_transport, search_artist(), chooser=chooser)

        assert isinstance(seen[0], MultipleMatches)
        assert isinstance(result.switch, SwitchSent)
        assert result.switch.criterion.path == '/music/bob/a.flac'
        assert multiple_results_transport.close_count == 1

    def test_chooser_can_cancel(self, multiple_results_transport):
        result = command(multiple_results_transport, search_artist(), chooser=lambda outcome: None)

        assert result.switch is None
        assert len(multiple_results_transport.sent) == 1
        assert multiple_results_transport.close_count == 1

    def test_choice_index_takes_precedence_over_chooser(self, multiple_results_transport):
        def chooser(outcome):
            raise AssertionError('chooser must not be asked')

        result = command(multiple_results_transport, search_artist(), choice_index=2, chooser=chooser)
        assert result.switch.criterion.album == 'Other Album'

    def test_chooser_error_closes_session(self, multiple_results_transport):
        def chooser(outcome):
            raise RuntimeError('terminal gone')

        with pytest.raises(RuntimeError, match='terminal gone'):
            command(multiple_results_transport, search_artist(), chooser=chooser)
        assert len(multiple_results_transport.sent) == 1
        assert multiple_results_transport.close_count == 1

    def test_cancel_while_choosing_does_not_wait_for_the_prompt(self, multiple_results_transport):
        release = threading.Event()

        def chooser(outcome):
            release.wait(TEST_TIMEOUT * 20)
            return 0

        async def factory():
            return multiple_results_transport

        async def scenario():
            task = asyncio.create_task(run_command(search_artist(), chooser=chooser, transport_factory=factory))
            await asyncio.sleep(TEST_TIMEOUT / 5)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        started = time.monotonic()
        try:
            run(scenario())
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < TEST_TIMEOUT * 10
        assert len(multiple_results_transport.sent) == 1
        assert multiple_results_transport.close_count == 1


class TestSessionStates:
    """Direct use of ProtocolSession."""

    def test_suspends_in_disambiguation(self, multiple_results_transport):
        async def scenario():
            session = ProtocolSession(multiple_results_transport)
            await session.send(search_artist())
            state = session.state
            closes = multiple_results_transport.close_count
            await session.close()
            return state, closes, session

        state, closes, session = run(scenario())

        assert state is SessionState.AWAITING_DISAMBIGUATION
        assert closes == 0
        assert session.state is SessionState.DONE
        assert multiple_results_transport.close_count == 1

    def test_done_after_acknowledgement(self):
        transport = ScriptedTransport([response_json('Paused')])

        async def scenario():
            session = ProtocolSession(transport)
            await session.send(Play())
            return session

        session = run(scenario())
        assert session.state is SessionState.DONE
        assert session.closed

    def test_second_send_is_rejected(self):
        transport = ScriptedTransport([response_json('Now playing')])

        async def scenario():
            session = ProtocolSession(transport)
            await session.send(Play())
            await session.send(Play())

        with pytest.raises(SessionStateError):
            run(scenario())
        assert len(transport.sent) == 1

    def test_select_requires_candidates(self):
        async def scenario():
            session = ProtocolSession(ScriptedTransport())
            await session.select(0)

        with pytest.raises(SessionStateError):
            run(scenario())

    def test_close_is_idempotent(self):
        transport = ScriptedTransport()

        async def scenario():
            async with ProtocolSession(transport) as session:
                await session.close()
                await session.close()

        run(scenario())
        assert transport.close_count == 1

    def test_candidates_are_empty_outside_disambiguation(self):
        assert ProtocolSession(ScriptedTransport()).candidates == ()

    def test_single_result_switch_to_is_done(self):
        """A SwitchTo that matches exactly one track completes in one round."""
        transport = ScriptedTransport([response_json('Switched to Rocker Song', [make_track()])])

        async def scenario():
            session = ProtocolSession(transport)
            outcome = await session.send(SwitchTo(criterion=MatchCriterion(title='Rocker Song')))
            return session, outcome

        session, outcome = run(scenario())
        assert isinstance(outcome, SingleMatch)
        assert session.state is SessionState.DONE


class TestConfirmedSwitch:
    """Opt-in acknowledgement of the disambiguating SwitchTo."""

    def switch(self, three_tracks, reply):
        transport = ScriptedTransport([response_json('Multiple results found: 3', three_tracks), reply])
        result = command(transport, search_artist(), choice_index=0, confirm_switch=True)
        return transport, result

    def test_confirmed(self, three_tracks):
        transport, result = self.switch(three_tracks, response_json('Now playing First Song', [three_tracks[0]]))

        assert isinstance(result.switch, SwitchConfirmed)
        assert result.switch.message == 'Now playing First Song'
        assert transport.recv_count == 2
        assert transport.close_count == 1

    def test_plain_acknowledgement_confirms(self, three_tracks):
        _, result = self.switch(three_tracks, response_json('Now playing'))
        assert isinstance(result.switch, SwitchConfirmed)

    def test_rejected_outcome(self, three_tracks):
        _, result = self.switch(three_tracks, response_json('Track vanished', outcome='rejected'))
        assert isinstance(result.switch, SwitchRejected)

    def test_still_ambiguous_is_rejected(self, three_tracks):
        _, result = self.switch(three_tracks, response_json('Multiple results found: 3', three_tracks))
        assert isinstance(result.switch, SwitchRejected)

    def test_missing_confirmation_is_a_transport_error(self, three_tracks):
        transport = ScriptedTransport([response_json('Multiple results found: 3', three_tracks)])

        with pytest.raises(TransportError):
            command(transport, search_artist(), choice_index=0, confirm_switch=True)
        assert transport.close_count == 1


class TestFailures:
    """Every failure is reported once, never retried, and closes the transport."""

    def test_send_failure(self):
        transport = ScriptedTransport(send_error=TransportError('broken pipe'))

        with pytest.raises(TransportError, match='broken pipe'):
            command(transport, Play())
        assert transport.close_count == 1
        assert transport.recv_count == 0

    def test_closed_before_response(self):
        transport = ScriptedTransport([])

        with pytest.raises(TransportError):
            command(transport, Play())
        assert transport.close_count == 1

    def test_empty_response(self):
        transport = ScriptedTransport([''])

        with pytest.raises(ProtocolError) as excinfo:
            command(transport, Play())
        assert excinfo.value.reason is ProtocolErrorReason.EMPTY_RESPONSE
        assert transport.close_count == 1

    def test_malformed_response(self):
        transport = ScriptedTransport(['{"status": "success"}'])

        with pytest.raises(ProtocolError) as excinfo:
            command(transport, Play())
        assert excinfo.value.reason is ProtocolErrorReason.MALFORMED
        assert transport.close_count == 1
        assert len(transport.sent) == 1

    def test_empty_criterion_is_never_sent(self):
        transport = ScriptedTransport([response_json('unused')])

        with pytest.raises(MissingArgument):
            command(transport, Search(criterion=MatchCriterion()))
        assert transport.sent == []
        assert transport.close_count == 1

    def test_candidate_without_identifying_fields(self):
        blank = make_track(path='', title='', artist='', album='', album_artist='')
        transport = ScriptedTransport([response_json('Multiple results found: 2', [blank, make_track()])])

        with pytest.raises(ProtocolError):
            command(transport, search_artist(), choice_index=0)
        assert len(transport.sent) == 1
        assert transport.close_count == 1

    def test_receive_timeout(self):
        transport = ScriptedTransport(hang=True)

        with pytest.raises(TransportError, match='Timeout'):
            command(transport, Play(), receive_timeout=TEST_TIMEOUT)
        assert transport.close_count == 1

    def test_close_failure_does_not_mask_original_error(self):
        class FailingClose(ScriptedTransport):
            async def close(self):
                await super().close()
                raise TransportError('close failed')

        transport = FailingClose([''])

        with pytest.raises(ProtocolError):
            command(transport, Play())
        assert transport.close_count == 1

    def test_cancellation_closes_transport(self):
        transport = ScriptedTransport(hang=True)

        async def scenario():
            session = ProtocolSession(transport, receive_timeout=None)
            task = asyncio.create_task(session.send(Play()))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return session

        session = run(scenario())
        assert transport.close_count == 1
        assert session.state is SessionState.DONE
