from api.session import (
    ProtocolSession,
    SessionResult,
    SessionState,
    SwitchConfirmed,
    SwitchRejected,
    SwitchSent,
    run_command,
)
from api.transport import Transport, WebSocketTransport

__all__ = [
    'ProtocolSession',
    'SessionResult',
    'SessionState',
    'SwitchConfirmed',
    'SwitchRejected',
    'SwitchSent',
    'Transport',
    'WebSocketTransport',
    'run_command',
]
