from decouple import config

# Server Connection
SERVER_HOST = config('SOUSA_HOST', default='localhost')
SERVER_PORT = config('SOUSA_PORT', default=9001, cast=int)

# Session Timeouts (seconds)
OPEN_TIMEOUT = config('SOUSA_OPEN_TIMEOUT', default=5.0, cast=float)
RECEIVE_TIMEOUT = config('SOUSA_RECEIVE_TIMEOUT', default=5.0, cast=float)

# Wait for the server to acknowledge the disambiguating switch-to request
# instead of sending it fire-and-forget
CONFIRM_SWITCH = config('SOUSA_CONFIRM_SWITCH', default=False, cast=bool)

# Logging Configuration
# Errors are reported by the CLI itself, lower this for protocol traces
LOG_LEVEL = config('SOUSA_LOG_LEVEL', default='CRITICAL')
LOG_FILE = config('SOUSA_LOG_FILE', default=None)

# Protocol
MULTIPLE_RESULTS_SENTINEL = 'Multiple results found'

# Search fields accepted per command
SEARCH_FIELDS = ('title', 'artist', 'album', 'album_artist')
SWITCH_TO_FIELDS = (*SEARCH_FIELDS, 'path')

# Test Configuration
TEST_TIMEOUT = config('TEST_TIMEOUT', default=0.5, cast=float)
