# shadowchat/core/config.py

import os

# =========================
# DATABASE
# =========================

DB_USER = os.getenv("DB_USER", "shadowchat_user")
DB_PASS = os.getenv("DB_PASS", "shadowchat")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "shadowchat")

# A full URL wins over the individual parts (handy for sqlite in development)
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# =========================
# STORAGE
# =========================

DATA_DIR = os.getenv("DATA_DIR", "data")
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "25"))
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024

# =========================
# CHAT
# =========================

BURN_SWEEP_INTERVAL_SECONDS = float(os.getenv("BURN_SWEEP_INTERVAL_SECONDS", "1.0"))
LOGIN_MAX_SKEW_SECONDS = int(os.getenv("LOGIN_MAX_SKEW_SECONDS", "300"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "200"))
SEND_TIMEOUT_SECONDS = float(os.getenv("SEND_TIMEOUT_SECONDS", "10"))
MAX_SIGNATURE_LENGTH = 100
MIN_GROUP_MEMBERS = 3

# Upper bounds for client-supplied times; larger values do not fit a datetime
MAX_BURN_TIME_MS = int(os.getenv("MAX_BURN_TIME_MS", str(365 * 24 * 3600 * 1000)))
MAX_TIMESTAMP_MS = 253402300799999  # 9999-12-31T23:59:59.999Z

# =========================
# LOGGING
# =========================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/shadowchat.log")
LOG_MAX_SIZE_MB = int(os.getenv("LOG_MAX_SIZE_MB", "10"))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))

# =========================
# HTTP
# =========================

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
