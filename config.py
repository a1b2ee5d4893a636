import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

def _method_codes(raw: str) -> dict:
    # "cash:EF,card:TJ" -> {"cash": "EF", "card": "TJ"}
    codes = {}
    for item in (raw or "").split(","):
        method, _, code = item.partition(":")
        if method.strip() and code.strip():
            codes[method.strip().lower()] = code.strip().upper()
    return codes

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as pharmaslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "pharmaslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "pharmaslot_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    PASSWORD_MIN_LENGTH = 8

    # Scheduling
    # used when the client sends no X-Timezone header
    DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
    BOOKING_WINDOW_DAYS = int(os.getenv("BOOKING_WINDOW_DAYS", "14"))
    PAYMENT_METHOD_CODES = _method_codes(
        os.getenv("PAYMENT_METHOD_CODES", "cash:EF,card:TJ,transfer:TR")
    )

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BCRYPT_ROUNDS = 4
    DEFAULT_TIMEZONE = "America/Lima"
    LOG_LEVEL = "DEBUG"
