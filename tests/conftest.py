import os
import re
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure predictable environment variables for tests before importing the app.
BASE_DIR = Path(__file__).resolve().parents[1]
TEST_DB_PATH = BASE_DIR / "test.db"

if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("DATABASE_URL", f"sqlite:///{TEST_DB_PATH}")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("EPHEMERAL_STORE_URL", "memory://")
os.environ.setdefault("LOG_FORMAT", "plain")

import rabhan_auth.main as main  # noqa: E402  (import after env vars are set)
from rabhan_auth.config import Settings  # noqa: E402
from rabhan_auth.container import build_container  # noqa: E402
from rabhan_auth.database import Base  # noqa: E402
from rabhan_auth.services.ephemeral_store import MemoryStore  # noqa: E402
from rabhan_auth.services.errors import NotificationError  # noqa: E402

STRONG_PASSWORD = "Str0ng!Pass"
OTP_PATTERN = re.compile(r"\b(\d{6})\b")


class FakeClock:
    """Starts at the real time and only moves forward, so issued JWTs stay unexpired."""

    def __init__(self):
        self.now = datetime.utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSender:
    """Collects outgoing SMS and email instead of calling a gateway."""

    def __init__(self):
        self.sms = []
        self.emails = []
        self.templates = []
        self.fail = False

    def send_sms(self, phone, text):
        if self.fail:
            raise NotificationError("sms gateway down")
        self.sms.append((phone, text))

    def send_email(self, to, subject, html):
        if self.fail:
            raise NotificationError("email gateway down")
        self.emails.append((to, subject, html))

    def send_template_email(self, to, template_id, variables):
        if self.fail:
            raise NotificationError("email gateway down")
        self.templates.append((to, template_id, variables))

    def last_sms_otp(self) -> str:
        return OTP_PATTERN.search(self.sms[-1][1]).group(1)

    def last_email_otp(self) -> str:
        return re.search(r">(\d{6})<", self.emails[-1][2]).group(1)

    def last_verification_token(self) -> str:
        return re.search(r"token=([0-9a-f]{64})", self.emails[-1][2]).group(1)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return MemoryStore(clock)


@pytest.fixture()
def sender():
    return RecordingSender()


@pytest.fixture()
def test_settings():
    settings = Settings()
    settings.ENVIRONMENT = "test"
    settings.JWT_SECRET = "test-secret"
    settings.JWT_REFRESH_SECRET = "test-refresh-secret"
    settings.BCRYPT_ROUNDS = 4
    settings.USE_DUMMY_OTP = False
    settings.DEV_LOGIN_BYPASS_ENABLED = False
    settings.DEV_CREDENTIAL_DOMAINS = ["@business.com"]
    settings.DEV_CREDENTIAL_EMAILS = ["admin@rabhan.sa"]
    settings.SENDGRID_EMAIL_VERIFICATION_TEMPLATE_ID = None
    return settings


@pytest.fixture()
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def container(test_settings, session_factory, store, sender, clock):
    return build_container(
        test_settings,
        session_factory=session_factory,
        store=store,
        sms_sender=sender,
        email_sender=sender,
        clock=clock,
    )


@pytest.fixture()
def auth_service(container):
    return container.auth_service


@pytest.fixture()
def phone_service(container):
    return container.phone_verification


@pytest.fixture()
def email_service(container):
    return container.email_verification


@pytest.fixture()
def client(container):
    """Provide a TestClient whose routes resolve services from the test container."""
    original = main.app.state.container
    main.app.state.container = container
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.state.container = original
