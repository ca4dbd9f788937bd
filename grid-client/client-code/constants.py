"""Shared constants for the Grid Monitor client."""

import re

# Voltage bands (volts). Boundaries are closed/open exactly as listed:
#   v <= OUTAGE_MAX_V            -> OUTAGE
#   OUTAGE_MAX_V < v < LOW_MIN_V -> VERY_LOW
#   LOW_MIN_V <= v < NORMAL_MIN_V -> LOW
#   v >= NORMAL_MIN_V            -> NORMAL
OUTAGE_MAX_V = 10.0
LOW_MIN_V = 170.0
NORMAL_MIN_V = 200.0

# Severity ranks per label (higher = more alarming)
SEVERITY = {
    "NORMAL": 0,
    "LOW": 2,
    "OFFLINE": 2,
    "VERY_LOW": 3,
    "OUTAGE": 4,
}

# Poll periods (seconds)
SINGLE_POLL_INTERVAL = 1.0   # Single-device view (district client)
MULTI_POLL_INTERVAL = 2.0    # Multi-node dashboard (HQ server)

# Endpoint paths, relative to the API prefix
DEFAULT_BASE_URL = "http://127.0.0.1:3002"
API_PREFIX = "/api"
STATUS_PATH = "/status"
NODES_PATH = "/nodes"
STATS_PATH = "/stats"
ACTION_PATH = "/action"
CONFIGURE_PATH = "/configure"
SET_VOLTAGE_PATH = "/set_voltage"
VERIFY_PATH = "/verify"

# Verbs accepted by POST /action
# connect/disconnect/reconnect are generic; the rest drive the district simulator
ACTION_VERBS = (
    "connect",
    "disconnect",
    "reconnect",
    "outage_start",
    "outage_end",
    "low_voltage",
)

# /verify acknowledgements that mean the request is now pending
VERIFY_ACCEPTED = ("sent", "queued", "queued_web")

# Log lines that count as a trigger event (case-insensitive substring match).
# The district client logs "HQ is inquiring if the problem is solved..." when
# headquarters sends a SOLVED_CHECK.
TRIGGER_PHRASES = ("HQ is inquiring", "hq inquiry")

UNKNOWN_REGION = "Unknown"

# Leading number of a "230.0V | Addis" transformer string (parseFloat-style)
LEADING_NUMBER_RE = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')
