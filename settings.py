import os

# --- Bin registry thresholds ---
PARTIAL_THRESHOLD = 50
FULL_THRESHOLD = 90
OVERDUE_THRESHOLD_HOURS = 48

# --- Fleet simulator thresholds (sensor era, kept apart from the registry's) ---
SIM_PARTIAL_THRESHOLD = 60
SIM_FULL_THRESHOLD = 90
SIM_ALERT_THRESHOLD = 95
SIMULATOR_INTERVAL_SECONDS = 30

# --- Route planning ---
MINUTES_PER_STOP = 15
KM_PER_DEGREE_LAT = 111.0
EARTH_RADIUS_KM = 6371.0

# --- Resident disposals ---
DISPOSAL_ALERT_THRESHOLD = 80
DISPOSAL_MAX_RETRIES = 3
DISPOSAL_BACKOFF_SECONDS = 1.0

# Collectors seen within this window show on the admin map
ACTIVE_COLLECTOR_MINUTES = 5


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///wasteops.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    OVERDUE_THRESHOLD_HOURS = int(os.environ.get("OVERDUE_THRESHOLD_HOURS", OVERDUE_THRESHOLD_HOURS))
    SIMULATOR_ENABLED = _env_flag("SIMULATOR_ENABLED")
    SIMULATOR_INTERVAL_SECONDS = float(os.environ.get("SIMULATOR_INTERVAL_SECONDS", SIMULATOR_INTERVAL_SECONDS))
    NOTIFY_WEBHOOK_URL = os.environ.get("NOTIFY_WEBHOOK_URL")
    DISPOSAL_MAX_RETRIES = DISPOSAL_MAX_RETRIES
    DISPOSAL_BACKOFF_SECONDS = DISPOSAL_BACKOFF_SECONDS
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SIMULATOR_ENABLED = False
    NOTIFY_WEBHOOK_URL = None
    DISPOSAL_BACKOFF_SECONDS = 0
