"""Signing and verification of the bearer tokens handed to clients.

Access and refresh tokens are HS256 JWTs sharing one secret. Both carry
``sub`` (user id), ``iat``, ``exp``, ``jti`` (the session id) and ``type``.
"""
import time
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from virtualqueue.core.config import settings

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


class TokenError(Exception):
    """Base class for every reason a token can fail verification."""


class TokenMalformed(TokenError):
    pass


class TokenSignatureInvalid(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class TokenCodec:
    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def sign(self, claims: Dict[str, Any], expires_in: int) -> str:
        """Sign ``claims`` into a token that expires ``expires_in`` seconds from now."""
        now = int(time.time())
        payload = dict(claims)
        payload.setdefault("iat", now)
        payload["exp"] = now + int(expires_in)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """Return the claims of a valid token or raise a ``TokenError``."""
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed("Malformed token") from exc

        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require_exp": True, "verify_aud": False},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired("Token expired") from exc
        except JWTClaimsError as exc:
            raise TokenMalformed(str(exc)) from exc
        except JWTError as exc:
            raise TokenSignatureInvalid("Invalid token signature") from exc

    @staticmethod
    def remaining_ttl(claims: Dict[str, Any], now: Optional[float] = None) -> int:
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return 0
        current = int(now if now is not None else time.time())
        return int(exp) - current


token_codec = TokenCodec(settings.SECRET_KEY, settings.ALGORITHM)


def get_token_codec() -> TokenCodec:
    return token_codec
