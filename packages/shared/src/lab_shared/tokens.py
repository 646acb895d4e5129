"""Bearer token verification shared by the api-server and the terminal gateway.

Tokens are issued by the portal's auth service as HS256 JWTs carrying
``userId``, ``email`` and ``role`` claims. Both the HTTP layer and the
WebSocket gateway verify them with the same TokenVerifier so a token accepted
in one place is accepted everywhere.
"""

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lab_shared.errors import InvalidToken, Unauthorized


class TokenClaims(BaseModel):
    """Identity claims extracted from a verified bearer token."""

    user_id: int = Field(alias="userId")
    email: str | None = None
    role: str = "user"

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class TokenVerifier:
    """Validates bearer tokens and returns their identity claims."""

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: str | None) -> TokenClaims:
        """Decode and validate a token.

        Raises:
            Unauthorized: If no token was supplied.
            InvalidToken: If the signature, expiry or claims are invalid.
        """
        if not token:
            raise Unauthorized("No token provided")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": True},
            )
        except ExpiredSignatureError as exc:
            raise InvalidToken("Token expired") from exc
        except InvalidTokenError as exc:
            raise InvalidToken("Invalid token") from exc

        if "userId" not in payload:
            raise InvalidToken("Token has no userId claim")
        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise InvalidToken("Token claims are invalid") from exc


def extract_bearer(authorization: str | None) -> str | None:
    """Strip an optional ``Bearer`` prefix from an Authorization header value."""
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return authorization.strip() or None
