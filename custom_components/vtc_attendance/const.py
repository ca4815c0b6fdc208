"""Constants for the VTC Attendance integration."""

DOMAIN = "vtc_attendance"

# Configuration
CONF_URL = "url"
CONF_TOKEN = "token"
CONF_STUDENT_ID = "student_id"
CONF_TERM = "term"
CONF_UPDATE_INTERVAL = "update_interval"

TERM_AUTO = "auto"
TERM_OPTIONS = [TERM_AUTO, "1", "2", "3"]

# Default values
DEFAULT_UPDATE_INTERVAL_HOURS = 12
MIN_UPDATE_INTERVAL_HOURS = 1
MAX_UPDATE_INTERVAL_HOURS = 168

# Storage
STORAGE_VERSION = 1
STORAGE_KEY = "vtc_attendance_store"
SAVE_DELAY_SECONDS = 5

# Sensor types
SENSOR_COURSE = "course"
SENSOR_OVERVIEW = "overview"

# Attributes
ATTR_STUDENT_ID = "student_id"
ATTR_LAST_SYNC = "last_sync"
ATTR_COURSE_COUNT = "course_count"
ATTR_SAFE = "safe"
ATTR_RECOVERABLE = "recoverable"
ATTR_FAILED = "failed"
ATTR_GRACE = "grace"
ATTR_LAST_ERROR = "last_error"

RECOVERY_ICONS = {
	"safe": "mdi:check-circle",
	"recoverable": "mdi:alert",
	"failed": "mdi:close-circle",
	"grace": "mdi:timer-sand",
}

# Events
EVENT_SYNC_COMPLETED = f"{DOMAIN}_sync_completed"

# Services
SERVICE_SYNC = "sync"
SERVICE_AUTO_SYNC = "auto_sync"
SERVICE_DEDUPE = "dedupe"
SERVICE_TOGGLE_MANUAL_ATTENDANCE = "toggle_manual_attendance"
SERVICE_LIST_TERM_EVENTS = "list_term_events"
