import os

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/coffee_chat")
SCHEDULE_TIMEZONE = os.getenv("SCHEDULE_TIMEZONE", "America/Chicago")

TIMEZONE_BUCKETS = ("AMERICAS", "EMEA", "APAC")

# 0 = Sunday ... 6 = Saturday, hours in SCHEDULE_TIMEZONE
SIGNUP_DAY_OF_WEEK = int(os.getenv("SIGNUP_DAY_OF_WEEK", "5"))
SIGNUP_START_HOUR = int(os.getenv("SIGNUP_START_HOUR", "14"))
SIGNUP_END_HOUR = int(os.getenv("SIGNUP_END_HOUR", "19"))

HISTORY_WEEKS = int(os.getenv("HISTORY_WEEKS", "12"))
PENALTY_WEEKS = int(os.getenv("PENALTY_WEEKS", "2"))
TOTAL_SLOTS = int(os.getenv("TOTAL_SLOTS", "10"))
SLOT_PREFIX = os.getenv("SLOT_PREFIX", "Coffee Chat VC")
MIN_SIGNUPS_FOR_MATCHING = int(os.getenv("MIN_SIGNUPS_FOR_MATCHING", "2"))

REMINDER_OFFSET_DAYS = int(os.getenv("REMINDER_OFFSET_DAYS", "2"))
REMINDER_HOUR = int(os.getenv("REMINDER_HOUR", "10"))

RESET_DAY_OF_WEEK = int(os.getenv("RESET_DAY_OF_WEEK", "0"))
RESET_HOUR = int(os.getenv("RESET_HOUR", "23"))
RESET_MINUTE = int(os.getenv("RESET_MINUTE", "59"))

SCHEDULER_POLL_SECONDS = int(os.getenv("SCHEDULER_POLL_SECONDS", "60"))
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

COMPLETION_DEBOUNCE_SECONDS = float(os.getenv("COMPLETION_DEBOUNCE_SECONDS", "300"))
LEADERBOARD_SIZE = int(os.getenv("LEADERBOARD_SIZE", "10"))

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

PLATFORM_BASE_URL = os.getenv("PLATFORM_BASE_URL", "http://platform:8080")
PLATFORM_API_TOKEN = os.getenv("PLATFORM_API_TOKEN", "")
PLATFORM_TIMEOUT_SECONDS = float(os.getenv("PLATFORM_TIMEOUT_SECONDS", "10"))
