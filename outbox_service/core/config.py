import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/chat_db")

# Application Metadata
PROJECT_NAME = "Chat Outbox Service"
VERSION = "1.0.0"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Outbox Dispatch Configuration
POLLING_INTERVAL = float(os.getenv("OUTBOX_POLL_INTERVAL", 5)) # Seconds between dispatch ticks
BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", 100)) # How many events to fetch per tick
TOPIC_PREFIX = os.getenv("OUTBOX_TOPIC_PREFIX", "domain-events")
ATTEMPTS_PER_TICK = int(os.getenv("OUTBOX_ATTEMPTS_PER_TICK", 1)) # Publish attempts per row inside one tick
RETRY_BASE_DELAY = float(os.getenv("OUTBOX_RETRY_BASE_DELAY", 0.5))
RETRY_MAX_DELAY = float(os.getenv("OUTBOX_RETRY_MAX_DELAY", 30))
PUBLISH_TIMEOUT = float(os.getenv("OUTBOX_PUBLISH_TIMEOUT", 10)) # Deadline for a single publish attempt, must fit the claim lease
MAX_RETRIES = int(os.getenv("OUTBOX_MAX_RETRIES", 0)) # Dead-letter ceiling, 0 disables dead-lettering
MAX_TICK_BACKOFF = float(os.getenv("OUTBOX_MAX_TICK_BACKOFF", 60))

# Multi-worker claiming
CLAIM_ENABLED = _env_bool("OUTBOX_CLAIM_ENABLED", True)
CLAIM_LEASE_SECONDS = int(os.getenv("OUTBOX_CLAIM_LEASE_SECONDS", 60))
WORKER_ID = os.getenv("OUTBOX_WORKER_ID") # Auto-generated when unset
RUN_DISPATCHER_IN_API = _env_bool("OUTBOX_RUN_IN_API", True)

# Broker Configuration
BROKER_BACKEND = os.getenv("BROKER_BACKEND", "kafka") # 'kafka' or 'logging'
KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
KAFKA_CLIENT_ID = os.getenv("KAFKA_CLIENT_ID", "chat-outbox-service")
KAFKA_RECONNECT_COOLDOWN = float(os.getenv("KAFKA_RECONNECT_COOLDOWN", 5)) # Seconds publishes fail fast after a failed connect
