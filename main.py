#!/usr/bin/env python

import argparse
import asyncio
import sys
from api import SessionResult, SwitchConfirmed, SwitchRejected, run_command
from config import CONFIRM_SWITCH, LOG_FILE, LOG_LEVEL, RECEIVE_TIMEOUT, SERVER_HOST, SERVER_PORT
from core.encoder import COMMANDS, encode_request
from core.errors import ProtocolError, SelectionError, TransportError, UsageError
from core.logging import cli_logger, log_error, setup_logging, start_action
from core.models import TrackRecord
from core.resolver import Acknowledgement, MultipleMatches, SingleMatch

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_SELECTION = 3
EXIT_INTERRUPTED = 130

TABLE_COLUMNS = (
    ('#', None),
    ('Title', 'title'),
    ('Artist', 'artist'),
    ('Album', 'album'),
    ('Album Artist', 'album_artist'),
    ('Path', 'path'),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='sousa', description='Remote control for a running Sousa music player')
    parser.add_argument('--hostname', default=SERVER_HOST, help='Host of the Sousa server (default: %(default)s)')
    parser.add_argument('--port', type=int, default=SERVER_PORT, help='Port of the Sousa server (default: %(default)s)')
    parser.add_argument('action', choices=COMMANDS, help='The command to execute')
    parser.add_argument('search_arg', nargs='?', help='Value to match for search/switch-to, or the skip direction')
    parser.add_argument(
        '-s', '--search-field', help='Field to match for search/switch-to: title, artist, album, album_artist (or path)'
    )
    parser.add_argument('--direction', help='Skip direction: Forward or Backward')
    parser.add_argument(
        '--choice-index', type=int, help='Zero-based index of the track to switch to when several tracks match'
    )
    parser.add_argument(
        '-i', '--interactive', action='store_true', help='Prompt for a choice when several tracks match'
    )
    parser.add_argument(
        '--confirm-switch',
        action=argparse.BooleanOptionalAction,
        default=CONFIRM_SWITCH,
        help='Wait for the server to confirm the final switch-to (default: %(default)s)',
    )
    parser.add_argument(
        '--timeout', type=float, default=RECEIVE_TIMEOUT, help='Seconds to wait for a response (default: %(default)s)'
    )
    parser.add_argument('--log-level', default=LOG_LEVEL, help='Log level for protocol traces on stderr')
    parser.add_argument('--log-file', default=LOG_FILE, help='Append JSON logs to this file')
    return parser


def format_track_table(tracks: tuple[TrackRecord, ...]) -> str:
    """Render tracks as a plain aligned table, numbered by selection index."""
    rows = [[header for header, _ in TABLE_COLUMNS]]
    for index, track in enumerate(tracks):
        rows.append([str(index)] + [getattr(track, field) for _, field in TABLE_COLUMNS[1:]])

    widths = [max(len(row[col]) for row in rows) for col in range(len(TABLE_COLUMNS))]
    lines = ['  '.join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip() for row in rows]
    lines.insert(1, '  '.join('-' * width for width in widths))
    return '\n'.join(lines)


def render(result: SessionResult, interactive: bool = False) -> str:
    outcome = result.outcome
    switch = result.switch

    if switch is not None:
        target = ', '.join(f'{name}={value!r}' for name, value in switch.criterion.present_fields().items())
        if isinstance(switch, SwitchConfirmed):
            return f'{switch.message}\nSwitched to {target}'
        if isinstance(switch, SwitchRejected):
            return f'Switch rejected by server: {switch.message}'
        return f'Switch requested: {target}'

    if isinstance(outcome, Acknowledgement):
        return outcome.message
    if isinstance(outcome, SingleMatch):
        return f'{outcome.message}\n{format_track_table((outcome.track,))}'

    if interactive:
        return 'No track selected.'
    return '\n'.join(
        [
            outcome.message,
            format_track_table(outcome.candidates),
            'Run the same command again with --choice-index N to switch to one of these tracks.',
        ]
    )


def prompt_for_choice(outcome: MultipleMatches) -> int | None:
    """Ask on the terminal which candidate to switch to; blank input cancels."""
    print(outcome.message)
    print(format_track_table(outcome.candidates))
    while True:
        try:
            answer = input(f'Select a track [0-{len(outcome.candidates) - 1}] (blank to cancel): ').strip()
        except EOFError:
            return None
        if not answer:
            return None
        try:
            return int(answer)
        except ValueError:
            print(f'Not a number: {answer}')


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    direction = args.direction
    if args.action == 'skip' and direction is None:
        direction = args.search_arg

    with start_action(cli_logger, "cli_command", action=args.action, hostname=args.hostname, port=args.port):
        try:
            request = encode_request(args.action, args.search_field, args.search_arg, direction)
            result = asyncio.run(
                run_command(
                    request,
                    host=args.hostname,
                    port=args.port,
                    choice_index=args.choice_index,
                    chooser=prompt_for_choice if args.interactive else None,
                    receive_timeout=args.timeout,
                    confirm_switch=args.confirm_switch,
                )
            )
        except UsageError as e:
            parser.print_usage(sys.stderr)
            print(f'error: {e}', file=sys.stderr)
            return EXIT_USAGE
        except SelectionError as e:
            print(f'error: {e}', file=sys.stderr)
            return EXIT_SELECTION
        except (TransportError, ProtocolError) as e:
            log_error(cli_logger, e, action=args.action)
            print(f'error: {e}', file=sys.stderr)
            return EXIT_FAILURE
        except KeyboardInterrupt:
            print('Interrupted', file=sys.stderr)
            return EXIT_INTERRUPTED

    print(render(result, interactive=args.interactive))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
