"""Classify a server response into the outcome the caller acts on.

The resolver is pure: it never reorders, sorts or deduplicates the results
the server returned, because a later selection index refers to that exact
order.
"""

from config import MULTIPLE_RESULTS_SENTINEL
from core.errors import ProtocolError, ProtocolErrorReason
from core.logging import log_protocol_event
from core.models import Response, ResponseOutcome, TrackRecord
from dataclasses import dataclass


@dataclass(frozen=True)
class Acknowledgement:
    message: str


@dataclass(frozen=True)
class SingleMatch:
    message: str
    track: TrackRecord


@dataclass(frozen=True)
class MultipleMatches:
    message: str
    candidates: tuple[TrackRecord, ...]


Classification = Acknowledgement | SingleMatch | MultipleMatches


def has_sentinel(message: str) -> bool:
    return message.startswith(MULTIPLE_RESULTS_SENTINEL)


def _classify_explicit(response: Response) -> Classification:
    outcome = response.outcome
    if outcome in (ResponseOutcome.ACK, ResponseOutcome.REJECTED):
        return Acknowledgement(response.message)
    if not response.results:
        raise ProtocolError(ProtocolErrorReason.MALFORMED, f"Outcome '{outcome.value}' without search results")
    if outcome is ResponseOutcome.SINGLE:
        if len(response.results) > 1:
            log_protocol_event(
                "outcome_count_mismatch",
                level="WARNING",
                description=f"Server reported a single match but returned {len(response.results)}; using the first",
                result_count=len(response.results),
            )
        return SingleMatch(response.message, response.results[0])
    return MultipleMatches(response.message, tuple(response.results))


def classify(response: Response, command_was_search_or_switch: bool) -> Classification:
    """Decide whether a response acknowledges, resolves, or presents candidates.

    Play, Pause, Skip and GetStatus are always acknowledged, whatever the
    server attached. For Search and SwitchTo an explicit ``outcome`` wins.
    Otherwise the "Multiple results found" prefix decides over the result
    count.

    Args:
        response: Decoded server response
        command_was_search_or_switch: Whether the request was Search or SwitchTo

    Returns:
        Acknowledgement, SingleMatch or MultipleMatches
    """
    if not command_was_search_or_switch:
        return Acknowledgement(response.message)

    if response.outcome is not None:
        return _classify_explicit(response)

    if not response.results:
        return Acknowledgement(response.message)

    if has_sentinel(response.message):
        if len(response.results) == 1:
            log_protocol_event(
                "sentinel_count_mismatch",
                level="WARNING",
                description="Server flagged multiple results but returned one; treating it as a candidate list",
                result_count=1,
            )
        return MultipleMatches(response.message, tuple(response.results))

    if len(response.results) == 1:
        return SingleMatch(response.message, response.results[0])

    log_protocol_event(
        "sentinel_missing",
        level="WARNING",
        description=f"Server returned {len(response.results)} results without the multiple-results prefix",
        result_count=len(response.results),
    )
    return MultipleMatches(response.message, tuple(response.results))
