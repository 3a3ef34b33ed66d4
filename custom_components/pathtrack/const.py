DOMAIN = "pathtrack"
VERSION = "0.3.0"

# Config entry keys
CONF_ENTRY_NAME = "entry_name"
CONF_API_URL = "api_url"
CONF_API_TOKEN = "api_token"
CONF_DEVICE_ID = "device_id"
CONF_SOURCE_ENTITY = "source_entity"
CONF_ACCURACY_THRESHOLD = "accuracy_threshold"
CONF_ALLOW_DEGRADED = "allow_degraded"
CONF_DUPLICATE_EPSILON = "duplicate_epsilon"
CONF_OBSERVE_INTERVAL = "observe_interval"
CONF_BACKGROUND_INTERVAL = "background_interval"
CONF_REVERSE_GEOCODE = "reverse_geocode"
CONF_GEOCODER_URL = "geocoder_url"
CONF_TIME_ZONE = "time_zone"

# Accuracy policy
DEFAULT_ACCURACY_THRESHOLD = 50.0   # metres; above this a fix is network grade
DEFAULT_DUPLICATE_EPSILON = 1e-6    # degrees, ~0.1 m

# Sync intervals (seconds)
DEFAULT_OBSERVE_INTERVAL = 5        # near-real-time observation
DEFAULT_BACKGROUND_INTERVAL = 30    # background polling
PENDING_FLUSH_INTERVAL = 60         # retry of unsynced local writes
TICK_TIMEOUT = 20                   # upper bound for one scheduler tick

# Position sampler defaults (seconds)
DEFAULT_ACQUIRE_TIMEOUT = 30
DEFAULT_MAX_CACHE_AGE = 60

# Enrichment
ENRICH_TIMEOUT = 10
GEOCODE_MIN_INTERVAL = 1.0          # Nominatim usage policy: max one request per second
GEOCODE_CACHE_PRECISION = 4         # ~11 m of latitude
GEOCODE_CACHE_SIZE = 1024
DEFAULT_GEOCODER_URL = "https://nominatim.openstreetmap.org/reverse"
GEOCODER_USER_AGENT = f"pathtrack-homeassistant/{VERSION}"

# Local cache mirror
STORAGE_VERSION = 1
STORAGE_KEY = f"{DOMAIN}.paths"
STORAGE_SAVE_DELAY = 10             # seconds, coalesces bursts of writes
LOCAL_CACHE_LIMIT = 500             # synced fixes kept per entity; pending fixes are never trimmed

# Route statistics
MIN_MOVEMENT_DISTANCE = 2.0         # metres; smaller steps are GPS jitter, not movement

# Remote path store endpoints (relative to the configured api_url)
HEALTH_PATH = "api/gps/health"
SAVE_PATH = "api/location-history/save"
DEVICE_HISTORY_PATH = "api/location-history/device/{entity_id}"
DEVICE_LATEST_PATH = "api/location-history/device/{entity_id}/latest"
DEVICE_DATES_PATH = "api/location-history/device/{entity_id}/dates"
DEFAULT_FETCH_LIMIT = 1000

# Services
SERVICE_START_OBSERVING = "start_observing"
SERVICE_STOP_OBSERVING = "stop_observing"
SERVICE_CAPTURE_LOCATION = "capture_location"
SERVICE_QUERY_RANGE = "query_range"
SERVICE_AVAILABLE_DATES = "available_dates"
SERVICE_LOAD_HISTORY = "load_history"
SERVICE_PURGE_PATH = "purge_path"
