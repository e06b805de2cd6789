import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/cms_db")

# Shared counter store for rate limiting. Empty means local fallback only.
REDIS_URL = os.getenv("REDIS_URL", "")
# After a connection failure, Redis is pinged again at most once per this many seconds
REDIS_RETRY_SECONDS = float(os.getenv("REDIS_RETRY_SECONDS", 5))

# Application Metadata
PROJECT_NAME = "CMS Reliability Infrastructure"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Outbox Dispatcher Configuration
OUTBOX_POLL_MS = int(os.getenv("OUTBOX_POLL_MS", 1500)) # Dispatcher ticks every N milliseconds
OUTBOX_BATCH_SIZE = 25 # How many events are claimed per tick
# Rows stuck in 'processing' longer than this are put back to 'pending'. 0 disables it.
OUTBOX_STALE_AFTER_SECONDS = int(os.getenv("OUTBOX_STALE_AFTER_SECONDS", 0))
OUTBOX_DISPATCHER_ENABLED = os.getenv("OUTBOX_DISPATCHER_ENABLED", "true").lower() in ("1", "true", "yes")

# Quota used by routes that don't declare their own (limit, window seconds)
DEFAULT_USER_QUOTA = (60, 10)
DEFAULT_ORG_QUOTA = (600, 60)
