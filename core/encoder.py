"""Turn a user-specified command into a protocol request."""

from config import SEARCH_FIELDS, SWITCH_TO_FIELDS
from core.errors import InvalidField, MissingArgument, UnknownCommand
from core.models import GetStatus, MatchCriterion, Pause, Play, Request, Search, Skip, SkipDirection, SwitchTo

COMMANDS = ('play', 'pause', 'skip', 'search', 'switch-to', 'status')

COMMAND_ALIASES = {
    'switch_to': 'switch-to',
    'switchto': 'switch-to',
    'get-status': 'status',
    'get_status': 'status',
    'getstatus': 'status',
}

FIELDS_BY_COMMAND = {
    'search': SEARCH_FIELDS,
    'switch-to': SWITCH_TO_FIELDS,
}


def normalize_command(command: str) -> str:
    """Return the canonical command name, raising UnknownCommand if there is none."""
    name = command.strip().lower()
    name = COMMAND_ALIASES.get(name, name)
    if name not in COMMANDS:
        raise UnknownCommand(command, COMMANDS)
    return name


def build_criterion(command: str, field: str | None, value: str | None) -> MatchCriterion:
    """Build a criterion with exactly one field set.

    Args:
        command: Canonical command name (search or switch-to)
        field: Field identifier, e.g. 'title'
        value: Value to match; the empty string is a valid value

    Raises:
        MissingArgument: field or value not supplied
        InvalidField: field not recognized for this command
    """
    if field is None:
        raise MissingArgument(f'{command} requires a search field')

    allowed = FIELDS_BY_COMMAND[command]
    name = field.strip().lower()
    if name not in allowed:
        raise InvalidField(field, allowed)
    if value is None:
        raise MissingArgument(f'{command} requires a value to match')

    criterion = MatchCriterion(**{name: value})
    if criterion.is_empty():
        raise MissingArgument(f'{command} requires a non-empty match criterion')
    return criterion


def parse_direction(direction: str | SkipDirection | None) -> SkipDirection:
    if direction is None:
        raise MissingArgument('skip requires a direction (Forward or Backward)')
    if isinstance(direction, SkipDirection):
        return direction

    for member in SkipDirection:
        if member.value.lower() == direction.strip().lower():
            return member
    raise InvalidField(direction, tuple(member.value for member in SkipDirection))


def encode_request(
    command: str,
    field: str | None = None,
    value: str | None = None,
    direction: str | SkipDirection | None = None,
) -> Request:
    """Build the single request sent for one client invocation.

    Play, Pause and GetStatus ignore any supplied criterion. No I/O happens here,
    so every usage error surfaces before a connection is opened.

    Args:
        command: One of play, pause, skip, search, switch-to, status
        field: Search field for search/switch-to
        value: Search value for search/switch-to
        direction: Forward or Backward for skip

    Returns:
        The request to send
    """
    name = normalize_command(command)

    if name == 'play':
        return Play()
    if name == 'pause':
        return Pause()
    if name == 'status':
        return GetStatus()
    if name == 'skip':
        return Skip(direction=parse_direction(direction))

    criterion = build_criterion(name, field, value)
    if name == 'search':
        return Search(criterion=criterion)
    return SwitchTo(criterion=criterion)
