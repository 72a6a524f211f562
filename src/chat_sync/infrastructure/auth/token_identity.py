from __future__ import annotations

import jwt

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import AuthorizationError

_USER_ID_CLAIMS = ("id", "userId", "sub")


class JwtIdentityProvider:
    """Reads the caller identity from a bearer JWT.

    The backend is the authority on the signature; it is only verified here
    when a shared secret is configured.
    """

    def __init__(self, secret: str = "", algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def identify(self, token: str) -> Identity:
        try:
            if self._secret:
                payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
            else:
                payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as exc:
            raise AuthorizationError(f"invalid token: {exc}") from exc

        user_id = next((payload[c] for c in _USER_ID_CLAIMS if payload.get(c) is not None), None)
        if user_id is None:
            raise AuthorizationError("token carries no user id")
        return Identity(user_id=str(user_id), token=token, username=payload.get("username"))
