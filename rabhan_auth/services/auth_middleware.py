from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rabhan_auth.config import settings
from rabhan_auth.container import ServiceContainer
from rabhan_auth.dependencies import get_container
from rabhan_auth.models.identity import UserType
from rabhan_auth.services.audit_log import Severity, log_security_event
from rabhan_auth.services.errors import InvalidToken

optional_bearer_scheme = HTTPBearer(auto_error=False)


def _get_auth_context(token: str, container: ServiceContainer) -> dict:
    try:
        payload = container.token_service.verify_access_token(token)
        role = UserType(payload.get("role"))
    except (InvalidToken, ValueError) as exc:
        log_security_event("ACCESS_TOKEN_INVALID", Severity.MEDIUM, reason=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    identity_id = payload["sub"]
    session_id = payload["sid"]
    if not container.auth_service.session_exists(identity_id, session_id, role):
        log_security_event(
            "ACCESS_TOKEN_SESSION_NOT_FOUND", Severity.MEDIUM, identity_id=identity_id, session_id=session_id
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired or logged out")

    return {"identity_id": identity_id, "role": role, "session_id": session_id, "payload": payload}


def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(settings.bearer_scheme),
    container: ServiceContainer = Depends(get_container),
):
    context = _get_auth_context(credentials.credentials, container)
    context["token"] = credentials.credentials
    return context


def get_optional_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_bearer_scheme),
    container: ServiceContainer = Depends(get_container),
):
    """Auth context when a bearer token is sent, ``None`` for anonymous callers.

    A token that is present but invalid is still rejected with 401.
    """
    if credentials is None:
        return None
    context = _get_auth_context(credentials.credentials, container)
    context["token"] = credentials.credentials
    return context
