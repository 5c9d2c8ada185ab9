import os
import socket

from dotenv import load_dotenv

load_dotenv()

# --- Database ---
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_HOST = os.getenv("POSTGRES_HOST", "localhost")  # In Docker, this will be 'postgres'
DB_PORT = os.getenv("POSTGRES_PORT", "5433")
DB_NAME = os.getenv("POSTGRES_DB", "ecommerce")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# Each ledger owns its storage. In local dev they all point at the same server.
ORDER_DATABASE_URL = os.getenv("ORDER_DATABASE_URL", DATABASE_URL)
INVENTORY_DATABASE_URL = os.getenv("INVENTORY_DATABASE_URL", DATABASE_URL)
PAYMENT_DATABASE_URL = os.getenv("PAYMENT_DATABASE_URL", DATABASE_URL)
SHIPPING_DATABASE_URL = os.getenv("SHIPPING_DATABASE_URL", DATABASE_URL)

SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"

# --- Messaging ---
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CONSUMER_NAME = os.getenv("CONSUMER_NAME", socket.gethostname())
CONSUMER_MAX_ATTEMPTS = int(os.getenv("CONSUMER_MAX_ATTEMPTS", "5"))
CONSUMER_BLOCK_MS = int(os.getenv("CONSUMER_BLOCK_MS", "5000"))
BACKGROUND_WORKERS_ENABLED = os.getenv("BACKGROUND_WORKERS_ENABLED", "true").lower() == "true"

OUTBOX_POLL_INTERVAL_SECONDS = float(os.getenv("OUTBOX_POLL_INTERVAL_SECONDS", "1.0"))
OUTBOX_BATCH_SIZE = int(os.getenv("OUTBOX_BATCH_SIZE", "50"))
OUTBOX_MAX_BACKOFF_SECONDS = float(os.getenv("OUTBOX_MAX_BACKOFF_SECONDS", "60"))
# Published envelopes and processed-event markers are swept after these ages.
# Marker retention must outlast the longest broker redelivery window.
OUTBOX_RETENTION_HOURS = float(os.getenv("OUTBOX_RETENTION_HOURS", "72"))
PROCESSED_EVENT_RETENTION_HOURS = float(os.getenv("PROCESSED_EVENT_RETENTION_HOURS", "168"))
RETENTION_SWEEP_INTERVAL_SECONDS = float(os.getenv("RETENTION_SWEEP_INTERVAL_SECONDS", "3600"))

# --- Collaborators (synchronous, order creation only) ---
PRODUCT_SERVICE_URL = os.getenv("PRODUCT_SERVICE_URL", "http://localhost:8001")
INVENTORY_SERVICE_URL = os.getenv("INVENTORY_SERVICE_URL", "http://localhost:8005")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "5.0"))

# --- Pricing ---
TAX_RATE = float(os.getenv("TAX_RATE", "0.18"))
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "200"))
FLAT_SHIPPING_FEE = float(os.getenv("FLAT_SHIPPING_FEE", "29.90"))
CURRENCY = os.getenv("CURRENCY", "TRY")

# --- External gateways ---
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "fake")  # fake | http
PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL", "http://localhost:9001")
PAYMENT_GATEWAY_API_KEY = os.getenv("PAYMENT_GATEWAY_API_KEY", "")

CARRIER_GATEWAY = os.getenv("CARRIER_GATEWAY", "fake")  # fake | http
CARRIER_URL = os.getenv("CARRIER_URL", "http://localhost:9002")
CARRIER_API_KEY = os.getenv("CARRIER_API_KEY", "")
DEFAULT_CARRIER = os.getenv("DEFAULT_CARRIER", "Aras Kargo")

# --- Observability ---
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
TRACING_ENABLED = os.getenv("TRACING_ENABLED", "true").lower() == "true"

# --- Security ---
# Empty means "not configured"; shared.security.api_key decides what to do with it.
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")
