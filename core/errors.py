"""Exception taxonomy for the remote-control protocol."""

from enum import Enum


class RemoteControlError(Exception):
    """Base class for every error raised by the Sousa remote client."""


class TransportError(RemoteControlError):
    """Connect, send, receive or close failed, including receive timeouts. Fatal."""


class ProtocolErrorReason(str, Enum):
    EMPTY_RESPONSE = 'EmptyResponse'
    MALFORMED = 'Malformed'


class ProtocolError(RemoteControlError):
    """The server answered with an empty or undecodable message. Fatal."""

    def __init__(self, reason: ProtocolErrorReason, detail: str = ''):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f'{reason.value}: {detail}'
        super().__init__(message)


class UsageError(RemoteControlError):
    """A command could not be built from the caller's input. Raised before any I/O."""


class InvalidField(UsageError):
    def __init__(self, field: str, allowed: tuple[str, ...]):
        self.field = field
        self.allowed = allowed
        super().__init__(f"Invalid field '{field}', expected one of: {', '.join(allowed)}")


class MissingArgument(UsageError):
    pass


class UnknownCommand(UsageError):
    def __init__(self, command: str, known: tuple[str, ...]):
        self.command = command
        self.known = known
        super().__init__(f"Unknown command '{command}', expected one of: {', '.join(known)}")


class SelectionError(RemoteControlError):
    """A selection index does not address one of the presented candidates.

    Non-fatal: the session ends cleanly without sending a second request.
    """

    def __init__(self, index: int, count: int):
        self.index = index
        self.count = count
        super().__init__(
            f'Selection index {index} is out of range for {count} result(s); '
            'run the search again without a forced index to see the current list'
        )


class SessionStateError(RemoteControlError):
    """An operation was attempted in a session state that does not allow it."""
