import os
from dotenv import load_dotenv

load_dotenv() # Load .env file from project root if running locally

# For Uvicorn binding inside container
APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

KAFKA_BOOTSTRAP_SERVERS = os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")
KAFKA_ENABLED = os.getenv("KAFKA_ENABLED", "true").lower() == "true"

# Output topic for status updates (consumed by catalog/admin)
ORDER_STATUS_UPDATE_TOPIC = os.getenv("ORDER_STATUS_UPDATE_TOPIC", "order_status_updates")

REDIS_HOST = os.getenv("REDIS_HOST", "redis")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "0"))
REDIS_ORDER_STATUS_TTL_SECONDS = int(os.getenv("REDIS_ORDER_STATUS_TTL_SECONDS", 3600)) # 1 hour

# --- Payment gateway (Stripe) ---
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
# Signed deliveries older than this are rejected as replays
STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com")
STRIPE_TIMEOUT_SECONDS = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "10"))

# Settlement (fee) lookup: the balance transaction lags the webhook
SETTLEMENT_RETRY_ATTEMPTS = int(os.getenv("SETTLEMENT_RETRY_ATTEMPTS", "3"))
SETTLEMENT_RETRY_BACKOFF_SECONDS = float(os.getenv("SETTLEMENT_RETRY_BACKOFF_SECONDS", "2.0"))

# Webhook arriving before its order has been committed
ORDER_LOOKUP_ATTEMPTS = int(os.getenv("ORDER_LOOKUP_ATTEMPTS", "3"))
ORDER_LOOKUP_DELAY_SECONDS = float(os.getenv("ORDER_LOOKUP_DELAY_SECONDS", "1.0"))
PENDING_SWEEP_INTERVAL_SECONDS = float(os.getenv("PENDING_SWEEP_INTERVAL_SECONDS", "60"))
PENDING_MAX_ATTEMPTS = int(os.getenv("PENDING_MAX_ATTEMPTS", "20"))

# --- Email provider (Resend) ---
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@topsfireplaces.shop")
CLIENT_EMAIL = os.getenv("CLIENT_EMAIL", "topsonlineshop@outlook.com") # Merchant notifications
SITE_URL = os.getenv("SITE_URL", "https://www.topsfireplaces.shop")
# Provider allows roughly two requests per second
NOTIFICATION_MIN_INTERVAL_SECONDS = float(os.getenv("NOTIFICATION_MIN_INTERVAL_SECONDS", "0.6"))

# --- Delivery radius check ---
GOOGLE_GEOCODING_API_KEY = os.getenv("GOOGLE_GEOCODING_API_KEY", "")
GOOGLE_GEOCODING_URL = os.getenv("GOOGLE_GEOCODING_URL", "https://maps.googleapis.com/maps/api/geocode/json")
BUSINESS_ADDRESS = os.getenv("BUSINESS_ADDRESS", "332 Bridgwater Drive, Westcliff-on-Sea, Essex SS0 0EZ, UK")
DELIVERY_RADIUS_MILES = float(os.getenv("DELIVERY_RADIUS_MILES", "20"))
