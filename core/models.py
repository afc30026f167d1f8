"""Protocol models shared by the client and the server, and their JSON wire form."""

import json
from core.errors import ProtocolError, ProtocolErrorReason
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from typing import Any, ClassVar

CRITERION_FIELDS = ('path', 'title', 'artist', 'album', 'album_artist')


class MatchCriterion(BaseModel):
    """Partial track metadata used to search for tracks or to pin an exact one.

    A field is absent when it is None. The empty string is a present value.
    """

    model_config = ConfigDict(frozen=True, extra='forbid')

    path: str | None = None
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    album_artist: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in CRITERION_FIELDS)

    def present_fields(self) -> dict[str, str]:
        """Fields that are set, in wire order."""
        return {name: getattr(self, name) for name in CRITERION_FIELDS if getattr(self, name) is not None}


class TrackRecord(BaseModel):
    """A fully resolved track as known to the server. Missing values are empty strings."""

    model_config = ConfigDict(frozen=True)

    path: str
    title: str
    artist: str
    album: str
    album_artist: str

    def to_criterion(self) -> MatchCriterion:
        """Narrow to an exact-match criterion, empty fields become unset."""
        return MatchCriterion(**{name: getattr(self, name) or None for name in CRITERION_FIELDS})


class SkipDirection(str, Enum):
    FORWARD = 'Forward'
    BACKWARD = 'Backward'


class Request(BaseModel):
    """One client request. Subclasses are the protocol's request variants.

    Unit variants are sent as a bare JSON string (``"Play"``), variants with
    a payload as a single-key object (``{"Skip": {"direction": "Forward"}}``).
    """

    model_config = ConfigDict(frozen=True)

    tag: ClassVar[str]
    targets_tracks: ClassVar[bool] = False

    def payload(self) -> dict[str, Any] | None:
        return None

    def to_wire(self) -> Any:
        payload = self.payload()
        if payload is None:
            return self.tag
        return {self.tag: payload}

    def encode(self) -> str:
        return json.dumps(self.to_wire())

    @classmethod
    def from_payload(cls, payload: Any) -> 'Request':
        if payload is not None:
            raise ProtocolError(ProtocolErrorReason.MALFORMED, f'{cls.tag} takes no payload')
        return cls()

    @staticmethod
    def decode(text: str) -> 'Request':
        """Parse a request frame as a server receives it."""
        if not text:
            raise ProtocolError(ProtocolErrorReason.EMPTY_RESPONSE)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProtocolError(ProtocolErrorReason.MALFORMED, f'Invalid JSON: {e}') from e

        if isinstance(data, str):
            tag, payload = data, None
        elif isinstance(data, dict) and len(data) == 1:
            ((tag, payload),) = data.items()
        else:
            raise ProtocolError(ProtocolErrorReason.MALFORMED, 'Request must be a tag or a single-key object')

        request_type = REQUEST_TYPES.get(tag)
        if request_type is None:
            raise ProtocolError(ProtocolErrorReason.MALFORMED, f'Unknown request: {tag}')

        try:
            return request_type.from_payload(payload)
        except ValidationError as e:
            raise ProtocolError(ProtocolErrorReason.MALFORMED, str(e)) from e


class Play(Request):
    tag: ClassVar[str] = 'Play'


class Pause(Request):
    tag: ClassVar[str] = 'Pause'


class GetStatus(Request):
    tag: ClassVar[str] = 'GetStatus'


class Skip(Request):
    tag: ClassVar[str] = 'Skip'

    direction: SkipDirection

    def payload(self) -> dict[str, Any]:
        return {'direction': self.direction.value}

    @classmethod
    def from_payload(cls, payload: Any) -> 'Skip':
        return cls.model_validate(payload)


class CriterionRequest(Request):
    """A request that addresses tracks through a MatchCriterion."""

    targets_tracks: ClassVar[bool] = True

    criterion: MatchCriterion

    def payload(self) -> dict[str, Any]:
        return self.criterion.present_fields()

    @classmethod
    def from_payload(cls, payload: Any) -> 'CriterionRequest':
        return cls(criterion=MatchCriterion.model_validate(payload))


class Search(CriterionRequest):
    tag: ClassVar[str] = 'Search'


class SwitchTo(CriterionRequest):
    tag: ClassVar[str] = 'SwitchTo'


REQUEST_TYPES: dict[str, type[Request]] = {
    request_type.tag: request_type for request_type in (Play, Pause, Skip, Search, SwitchTo, GetStatus)
}


class ResponseOutcome(str, Enum):
    """Explicit classification a server may attach to a response."""

    ACK = 'ack'
    SINGLE = 'single'
    MULTIPLE = 'multiple'
    REJECTED = 'rejected'


class Response(BaseModel):
    """The server's reply to one request."""

    model_config = ConfigDict(frozen=True)

    message: str
    results: tuple[TrackRecord, ...] = Field(default=(), alias='search_results')
    outcome: ResponseOutcome | None = None

    @classmethod
    def decode(cls, text: str | bytes) -> 'Response':
        if isinstance(text, bytes):
            try:
                text = text.decode('utf-8')
            except UnicodeDecodeError as e:
                raise ProtocolError(ProtocolErrorReason.MALFORMED, f'Invalid UTF-8: {e}') from e
        if not text or not text.strip():
            raise ProtocolError(ProtocolErrorReason.EMPTY_RESPONSE)
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise ProtocolError(ProtocolErrorReason.MALFORMED, str(e)) from e

    def encode(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
