import logging

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware

from rabhan_auth.config import settings
from rabhan_auth.container import build_container
from rabhan_auth.database import Base, engine
from rabhan_auth.models import contractor, contractor_session, password_reset_token, user, user_session  # noqa: F401
from rabhan_auth.routers import auth, verification
from rabhan_auth.utils.logging import configure_logging
from rabhan_auth.utils.response import create_response, handle_exception

configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT, settings.SERVICE_NAME)
settings.validate()

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

# Auto create tables
Base.metadata.create_all(bind=engine)

app.state.container = build_container(settings)

# CORS for SPA / API access
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(verification.router)

logger.info("%s started in %s mode", settings.PROJECT_NAME, settings.ENVIRONMENT)


@app.get("/")
def home():
    try:
        return create_response(
            message="RABHAN auth service running",
            data={"service": settings.SERVICE_NAME},
            status_code=status.HTTP_200_OK
        )
    except Exception as exc:
        return handle_exception(exc)


@app.get("/health")
def health():
    try:
        return create_response(
            message="OK",
            data={"service": settings.SERVICE_NAME, "environment": settings.ENVIRONMENT},
        )
    except Exception as exc:
        return handle_exception(exc)
