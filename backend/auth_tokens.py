"""Signed, time-bounded identity tokens.

Tokens are HS256 JWTs carrying the account id (``sub``), the role, the
verification and block flags, ``iat`` and ``exp``. The codec never touches
the database; the shared secret is handed in when the codec is built.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from api_errors import AuthenticationFailure

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(days=7)
REQUIRED_CLAIMS = ["sub", "role", "iat", "exp"]


class TokenError(AuthenticationFailure):
    default_message = "Invalid session token."


class MalformedToken(TokenError):
    error = "malformed_token"
    default_message = "Session token could not be parsed."


class SignatureInvalid(TokenError):
    error = "signature_invalid"
    default_message = "Session token signature does not match."


class TokenExpired(TokenError):
    error = "token_expired"
    default_message = "Session token has expired. Please sign in again."


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class Identity:
    account_id: str
    role: str
    is_verified: bool
    is_blocked: bool
    issued_at: datetime
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    def __init__(
        self,
        secret: str,
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not secret:
            raise ValueError("A signing secret is required.")
        self._secret = secret
        self.ttl = ttl
        self._clock = clock or _utcnow

    def issue(
        self,
        account_id: str,
        role: str,
        is_verified: bool,
        is_blocked: bool = False,
    ) -> IssuedToken:
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self.ttl
        payload = {
            "sub": str(account_id),
            "role": role,
            "is_verified": bool(is_verified),
            "is_blocked": bool(is_blocked),
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at)

    def verify(self, token: Optional[str]) -> Identity:
        if not token or not isinstance(token, str):
            raise MalformedToken()

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        # InvalidSignatureError derives from DecodeError, so it must come first.
        except jwt.InvalidSignatureError as exc:
            raise SignatureInvalid() from exc
        except jwt.InvalidTokenError as exc:
            raise MalformedToken(str(exc) or None) from exc

        account_id = claims.get("sub")
        role = claims.get("role")
        is_verified = claims.get("is_verified", False)
        is_blocked = claims.get("is_blocked", False)
        if not isinstance(account_id, str) or not account_id:
            raise MalformedToken("Session token has no account id.")
        if not isinstance(role, str):
            raise MalformedToken("Session token has no role.")
        if not isinstance(is_verified, bool) or not isinstance(is_blocked, bool):
            raise MalformedToken("Session token flags are malformed.")

        return Identity(
            account_id=account_id,
            role=role,
            is_verified=is_verified,
            is_blocked=is_blocked,
            issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )
