import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from jose import JWTError, jwt

from rabhan_auth.services.errors import InvalidToken

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds
    refresh_expires_at: datetime


class TokenService:
    """Issues and verifies the signed access/refresh JWT pair."""

    def __init__(
        self,
        secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        issuer: str = "rabhan-auth-service",
        audience: str = "rabhan-platform",
        access_minutes: int = 15,
        refresh_days: int = 7,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.secret = secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = timedelta(minutes=access_minutes)
        self.refresh_ttl = timedelta(days=refresh_days)
        self._clock = clock

    def _encode(self, claims: dict, secret: str, expires_at: datetime, token_type: str) -> str:
        to_encode = dict(claims)
        to_encode.update(
            {
                "type": token_type,
                "jti": str(uuid.uuid4()),
                "iss": self.issuer,
                "aud": self.audience,
                "iat": self._clock(),
                "exp": expires_at,
            }
        )
        return jwt.encode(to_encode, secret, algorithm=self.algorithm)

    def issue_pair(self, identity_id: str, email: str, role: str, session_id: str) -> TokenPair:
        now = self._clock()
        claims = {"sub": identity_id, "email": email, "role": role, "sid": session_id}
        refresh_expires_at = now + self.refresh_ttl
        return TokenPair(
            access_token=self._encode(claims, self.secret, now + self.access_ttl, ACCESS),
            refresh_token=self._encode(claims, self.refresh_secret, refresh_expires_at, REFRESH),
            expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_at=refresh_expires_at,
        )

    def _decode(self, token: str, secret: str, token_type: str) -> dict:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except JWTError as exc:
            raise InvalidToken() from exc
        if payload.get("type") != token_type or not payload.get("sub") or not payload.get("sid"):
            raise InvalidToken("Invalid token payload")
        return payload

    def verify_access_token(self, token: str) -> dict:
        return self._decode(token, self.secret, ACCESS)

    def verify_refresh_token(self, token: str) -> dict:
        return self._decode(token, self.refresh_secret, REFRESH)
