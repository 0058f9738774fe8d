import os
from dotenv import load_dotenv

load_dotenv()

# --- Database ---
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_HOST = os.getenv("POSTGRES_HOST", "localhost") # In Docker, this will be 'postgres'
DB_PORT = os.getenv("POSTGRES_PORT", "5433")
DB_NAME = os.getenv("POSTGRES_DB", "rentals")
DB_ISOLATION_LEVEL = os.getenv("DB_ISOLATION_LEVEL", "SERIALIZABLE")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# --- Observability ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4317")
TRACING_ENABLED = os.getenv("TRACING_ENABLED", "true").lower() == "true"

# --- Security ---
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")

# --- Payments (Stripe) ---
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "cad")
STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL", "http://localhost:3000/payment/success")
STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL", "http://localhost:3000/payment/cancel")
APPLICATION_FEE_RATE = float(os.getenv("APPLICATION_FEE_RATE", "0.05"))

# --- Outbound delivery ---
PUSH_GATEWAY_URL = os.getenv("PUSH_GATEWAY_URL", "http://localhost:8005/notifications")
MAIL_RELAY_URL = os.getenv("MAIL_RELAY_URL", "http://localhost:8006/mail")
MAIL_SENDER_ADDRESS = os.getenv("MAIL_SENDER_ADDRESS", "no-reply@rentals.local")
DELIVERY_TIMEOUT_SECONDS = float(os.getenv("DELIVERY_TIMEOUT_SECONDS", "5.0"))

# --- Eligibility gate ---
HIGH_TRUST_RATING = float(os.getenv("HIGH_TRUST_RATING", "4.5"))
BASIC_MAX_DURATION_DAYS = int(os.getenv("BASIC_MAX_DURATION_DAYS", "7"))
LONG_RENTAL_DAYS = int(os.getenv("LONG_RENTAL_DAYS", "14"))
MAX_RENTAL_DAYS = int(os.getenv("MAX_RENTAL_DAYS", "30"))
BASIC_PRICE_CAP_CENTS = int(os.getenv("BASIC_PRICE_CAP_CENTS", "20000"))
STANDARD_PRICE_CAP_CENTS = int(os.getenv("STANDARD_PRICE_CAP_CENTS", "50000"))
EXTENDED_MIN_TOP_REVIEWS = int(os.getenv("EXTENDED_MIN_TOP_REVIEWS", "5"))
TOP_REVIEW_RATING = int(os.getenv("TOP_REVIEW_RATING", "5"))

# --- Orders ---
MIN_ORDER_NUMBER = int(os.getenv("MIN_ORDER_NUMBER", "100000"))
MAX_ORDER_NUMBER = int(os.getenv("MAX_ORDER_NUMBER", "999999"))

# --- Overdue sweep ---
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
FINE_PER_DAY_CENTS = int(os.getenv("FINE_PER_DAY_CENTS", "1000"))
REMINDER_WINDOW_HOURS = int(os.getenv("REMINDER_WINDOW_HOURS", "24"))
