"""
Bearer token issuance and verification.

Tokens are HS256 JWTs carrying the user id (as ``sub``), the username and
the standard ``iat``/``exp`` claims. Nothing is stored server-side: a token
is valid exactly when its signature matches the current secret and its
expiry is in the future.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from chat_api.errors import InvalidToken, TokenExpired

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    username: str


class TokenService:
    def __init__(self, secret: str, algorithm: str = "HS256", lifetime: timedelta = timedelta(hours=24)):
        self._secret = secret
        self._algorithm = algorithm
        self.lifetime = lifetime

    def issue(self, user_id: int, username: str, issued_at: Optional[datetime] = None) -> str:
        """
        Sign a token for the given user.

        Args:
            user_id: Identifier of the authenticated user
            username: Username embedded for display purposes
            issued_at: Issue time, defaults to now (UTC)

        Returns:
            Encoded JWT string
        """
        issued_at = issued_at or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "username": username,
            "iat": issued_at,
            "exp": issued_at + self.lifetime,
        }
        logger.debug(f"Issuing token for user_id={user_id}")
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims:
        """
        Check signature and expiry and return the embedded identity.

        Raises:
            TokenExpired: the token is past its expiry
            InvalidToken: bad signature, malformed token or missing claims
        """
        try:
            data = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Token rejected: expired")
            raise TokenExpired()
        except jwt.InvalidTokenError as e:
            logger.info(f"Token rejected: {e}")
            raise InvalidToken()

        try:
            return TokenClaims(user_id=int(data["sub"]), username=str(data["username"]))
        except (KeyError, ValueError):
            logger.info("Token rejected: malformed claims")
            raise InvalidToken()
