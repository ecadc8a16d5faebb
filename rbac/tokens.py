"""
rbac/tokens.py -- Stateless token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry user_id, username, email, the
       role names and permission names the user held at issue time, plus
       iat/exp. The exp claim is always iat + a fixed TTL.

  Fail closed: verify_token() returns None on any failure -- bad signature,
       wrong algorithm, expiry, malformed structure, missing or ill-typed
       claims. It never raises to the caller.

  Snapshot: roles and permissions inside a token are frozen at issue time. A
       grant revoked afterwards stays usable until the token expires. Callers
       that cannot accept that lag use the gate's live mode.

  Secret: captured once in __init__ and never exposed or replaced. Rotating
       SECRET_KEY (new TokenService) invalidates every earlier token; there is
       no revocation list.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from rbac.models import TokenClaims

logger = logging.getLogger("rbac.tokens")

_ALGORITHM = "HS256"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class TokenService:
    """Mints and verifies signed identity tokens.

    Usage:
        tokens = TokenService(settings.secret_key, settings.token_expire_seconds)
        token = tokens.issue_token(TokenClaims(user_id=1, username="admin", email="a@x.io"))
        claims = tokens.verify_token(token)  # TokenClaims or None

    clock supplies "now" for both iat/exp on issue and the expiry check on
    verify.
    """

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty.")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive.")
        self.__secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    def issue_token(self, claims: TokenClaims) -> str:
        """Encode claims into a signed JWT. issued_at/expires_at on the input are ignored."""
        issued_at = self._clock().replace(microsecond=0)
        payload = {
            "sub": claims.username,
            "user_id": claims.user_id,
            "username": claims.username,
            "email": claims.email,
            "roles": list(claims.roles),
            "permissions": list(claims.permissions),
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._ttl).timestamp()),
        }
        return jwt.encode(payload, self.__secret_key, algorithm=_ALGORITHM)

    def verify_token(self, token: str) -> TokenClaims | None:
        """Decode and verify a token. Returns TokenClaims or None on any failure."""
        if not token or not isinstance(token, str):
            return None
        try:
            # exp is checked below against self._clock, not jose's wall clock.
            payload = jwt.decode(
                token,
                self.__secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "require_exp": True},
            )
        except (JWTError, TypeError, ValueError) as exc:
            # jose lets TypeError escape for a signed but ill-typed iat/nbf.
            logger.debug("Token rejected: %s", exc)
            return None

        if not (
            _is_int(payload.get("user_id"))
            and isinstance(payload.get("username"), str)
            and isinstance(payload.get("email"), str)
            and _is_str_list(payload.get("roles"))
            and _is_str_list(payload.get("permissions"))
            and _is_int(payload.get("iat"))
            and _is_int(payload.get("exp"))
        ):
            logger.debug("Token rejected: missing or malformed claims")
            return None
        if payload["exp"] < int(self._clock().timestamp()):
            logger.debug("Token rejected: expired")
            return None

        return TokenClaims(
            user_id=payload["user_id"],
            username=payload["username"],
            email=payload["email"],
            roles=tuple(payload["roles"]),
            permissions=tuple(payload["permissions"]),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
