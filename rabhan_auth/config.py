import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi.security import HTTPBearer

BASE_DIR = Path(__file__).resolve().parent.parent  # -> project root

# Load .env explicitly from project root
load_dotenv(BASE_DIR / ".env")


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _csv(name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    PROJECT_NAME = "RABHAN Auth Service"
    SERVICE_NAME = os.getenv("SERVICE_NAME", "auth-service")

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rabhan_auth.db")
    EPHEMERAL_STORE_URL = os.getenv("EPHEMERAL_STORE_URL", "redis://localhost:6379/0")
    EPHEMERAL_STORE_PREFIX = os.getenv("EPHEMERAL_STORE_PREFIX", "rabhan:auth:")

    JWT_SECRET = os.getenv("JWT_SECRET")
    JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET")
    ALGORITHM = os.getenv("ALGORITHM", "HS256")
    JWT_ISSUER = os.getenv("JWT_ISSUER", "rabhan-auth-service")
    JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "rabhan-platform")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))
    REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 7))

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", 5))
    ACCOUNT_LOCK_MINUTES = int(os.getenv("ACCOUNT_LOCK_MINUTES", 30))
    OTP_RATE_LIMIT = int(os.getenv("OTP_RATE_LIMIT", 5))
    OTP_RATE_WINDOW_SECONDS = int(os.getenv("OTP_RATE_WINDOW_SECONDS", 3600))
    CONTRACTOR_CACHE_SECONDS = int(os.getenv("CONTRACTOR_CACHE_SECONDS", 3600))

    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")
    SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
    SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "noreply@rabhan.sa")
    SENDGRID_FROM_NAME = os.getenv("SENDGRID_FROM_NAME", "RABHAN")
    SENDGRID_EMAIL_VERIFICATION_TEMPLATE_ID = os.getenv("SENDGRID_EMAIL_VERIFICATION_TEMPLATE_ID")
    NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", 10))

    # Development conveniences, never honoured in production
    USE_DUMMY_OTP = _flag("USE_DUMMY_OTP")
    DUMMY_OTP = os.getenv("DUMMY_OTP", "123456")
    DEV_LOGIN_BYPASS_ENABLED = _flag("DEV_LOGIN_BYPASS_ENABLED")
    DEV_CREDENTIAL_DOMAINS = _csv("DEV_CREDENTIAL_DOMAINS", "@example.com,@business.com")
    DEV_CREDENTIAL_EMAILS = _csv("DEV_CREDENTIAL_EMAILS", "admin@rabhan.sa")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")

    bearer_scheme = HTTPBearer()
    cors_origins = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def dummy_otp_enabled(self) -> bool:
        return self.USE_DUMMY_OTP and not self.is_production

    @property
    def dev_login_bypass_enabled(self) -> bool:
        return self.DEV_LOGIN_BYPASS_ENABLED and not self.is_production

    def validate(self) -> None:
        """Refuse to boot a production process with unsafe settings."""
        if not self.is_production:
            return
        problems = []
        if self.USE_DUMMY_OTP:
            problems.append("USE_DUMMY_OTP must be disabled in production")
        if self.DEV_LOGIN_BYPASS_ENABLED:
            problems.append("DEV_LOGIN_BYPASS_ENABLED must be disabled in production")
        if not self.JWT_SECRET or not self.JWT_REFRESH_SECRET:
            problems.append("JWT_SECRET and JWT_REFRESH_SECRET are required")
        if self.EPHEMERAL_STORE_URL.startswith("memory://"):
            problems.append("EPHEMERAL_STORE_URL must point at redis in production")
        if problems:
            raise RuntimeError("Invalid production configuration: " + "; ".join(problems))


settings = Settings()
