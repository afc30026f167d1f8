"""
Logging configuration for the Sousa remote client using eliot.

This module provides structured logging for the protocol session, the
transport and the command-line front end. Every protocol round runs inside
an eliot action so that sent frames, received frames, classification and
failures of one command invocation share a single task context.
"""

import eliot
import logging
import sys
from eliot import Logger, log_message, start_action, write_traceback
from eliot.stdlib import EliotHandler
from pathlib import Path

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_installed_destinations = []


class HumanReadableDestination:
    """Destination that formats eliot messages as single readable lines."""

    def __init__(self, file, min_level: int = logging.INFO):
        self.file = file
        self.min_level = min_level

    def __call__(self, message):
        """Format and write log message."""
        # Skip action start/finish bookkeeping, only log_message output is shown
        if message.get("action_type") and not message.get("message_type"):
            return

        level = LEVELS.get(str(message.get("level", message.get("log_level", "INFO"))).upper(), logging.INFO)
        if level < self.min_level:
            return

        msg_type = message.get("message_type", "")
        description = message.get("description", "")

        if msg_type == "protocol_frame":
            direction = message.get("direction", "?")
            output = f"[{direction.upper()}] {message.get('payload', '')}"
        elif msg_type == "state_transition":
            output = f"[SESSION] {message.get('old_state')} → {message.get('new_state')}"
        elif msg_type == "error_occurred":
            output = f"[ERROR] {message.get('error_type')}: {message.get('error_message')}"
        elif description:
            output = description
        elif "message" in message:
            output = message["message"]
        else:
            return

        if output and output.strip():
            self.file.write(output + "\n")
            self.file.flush()


def setup_logging(log_level: str = "WARNING", log_file: str | None = None) -> None:
    """
    Set up eliot logging for the client.

    Calling this again replaces the destinations installed by the previous call.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for raw JSON logs (human-readable lines always go to stderr)
    """
    level = LEVELS.get(log_level.upper(), logging.WARNING)

    while _installed_destinations:
        destination, handle = _installed_destinations.pop()
        eliot.remove_destination(destination)
        if handle is not None:
            handle.close()

    human = HumanReadableDestination(sys.stderr, min_level=level)
    eliot.add_destination(human)
    _installed_destinations.append((human, None))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(log_path, "a")
        json_destination = eliot.FileDestination(file=handle)
        eliot.add_destination(json_destination)
        _installed_destinations.append((json_destination, handle))

    # Route stdlib logging (websockets logs through it) into eliot
    root = logging.getLogger()
    root.setLevel(level)
    if not any(isinstance(h, EliotHandler) for h in root.handlers):
        root.addHandler(EliotHandler())

    log_message(message_type="logging_setup", log_level=log_level, log_file=log_file or "stderr", level="DEBUG")


def get_logger(name: str) -> Logger:
    """
    Get an eliot logger instance for a specific component.

    The returned Logger is meant for start_action(); use log_message() for
    individual messages.
    """
    return Logger()


# Global logger instances for different components
session_logger = get_logger("sousa_session")
transport_logger = get_logger("sousa_transport")
cli_logger = get_logger("sousa_cli")


def log_protocol_event(event: str, level: str = "INFO", **context):
    """
    Log a protocol event inside the current action.

    Args:
        event: Event name, used as the eliot message type
        level: Severity used by the human-readable destination
        **context: Additional context data
    """
    log_message(message_type=event, level=level, **context)


def log_frame(direction: str, payload: str):
    """Log a frame sent to or received from the server."""
    log_message(message_type="protocol_frame", direction=direction, payload=payload, level="DEBUG")


def log_error(logger: Logger, error: Exception, **context):
    """
    Log errors with full context and traceback.

    Args:
        logger: Eliot logger instance
        error: Exception that occurred
        **context: Additional context data
    """
    write_traceback(logger, exc_info=sys.exc_info())
    log_message(
        message_type="error_occurred",
        error_message=str(error),
        error_type=type(error).__name__,
        level="ERROR",
        **context,
    )


__all__ = [
    "cli_logger",
    "get_logger",
    "log_error",
    "log_frame",
    "log_protocol_event",
    "session_logger",
    "setup_logging",
    "start_action",
    "transport_logger",
]
