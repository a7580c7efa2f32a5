"""Internal constants shared across the library."""

BASE_URL = "http://127.0.0.1:8000"
USER_AGENT = "thingsync/1"

PUBLIC_LIST_PATH = "/api/services/lifx/public/list"
PRIVATE_LIST_PATH = "/api/services/lifx/private/list"
THINGS_PATH = "/api/things"
SET_STATE_PATH = "/api/services/lifx/set_state"
SET_COLOR_PATH = "/api/services/lifx/set_color"

# ------------------------------------------------------------------
# Expectation polling defaults
# ------------------------------------------------------------------

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_DEVICE_RETRY_DELAY = 0.1
# Group commands fan out to several bulbs and need longer to settle.
DEFAULT_GROUP_RETRY_DELAY = 0.3
DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_SEND_TIMEOUT = 10.0

# ------------------------------------------------------------------
# Colour comparison tolerances
# ------------------------------------------------------------------

HUE_TOLERANCE_DEGREES = 1.0
UNIT_TOLERANCE = 0.01
KELVIN_TOLERANCE = 1

KELVIN_MIN = 1500
KELVIN_MAX = 9000
