"""Runtime configuration for the scam detector client.

The backend base URL is read from ``SCAM_DETECTOR_API_URL`` (a ``.env`` file
is honoured). Everything else is a fixed constant tuned for a free-tier host
that sleeps after a few minutes of inactivity.
"""

import os

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_URL = "https://yscam-api.onrender.com"

API_BASE_URL: str = os.getenv("SCAM_DETECTOR_API_URL", DEFAULT_API_URL).rstrip("/")

# Request timeouts, in seconds
STATUS_TIMEOUT = 5.0
WAKEUP_TIMEOUT = 20.0
KEEP_ALIVE_TIMEOUT = 10.0
TEXT_TIMEOUT = 180.0
DOCUMENT_TIMEOUT = 240.0

# Probe heuristics
WARM_THRESHOLD = 2.0
FAST_THRESHOLD = 0.5
COLD_START_ESTIMATE = 45

# The host sleeps after this many seconds without traffic
HOST_SLEEP_THRESHOLD = 300.0
KEEP_ALIVE_INTERVAL = HOST_SLEEP_THRESHOLD * 0.8

PROGRESS_INTERVAL = 0.2
