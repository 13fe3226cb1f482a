"""
Bearer token verification.

Sessions are issued by the authentication service; this side only checks
the signature and reads the subscriber id from the ``sub`` claim.
"""

import logging
import time
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from ..domains.errors import UnauthenticatedError

logger = logging.getLogger("provisioner.auth.token")


class SubscriberTokenVerifier:
    """Verifies HS256 session tokens and extracts the subscriber id."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify token and return claims.

        Raises:
            UnauthenticatedError: If the token is invalid, expired or
                carries no subject.
        """
        if not self.secret:
            raise UnauthenticatedError("Token verification is not configured")

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            raise UnauthenticatedError(f"Invalid token: {e}")

        if not claims.get("sub"):
            raise UnauthenticatedError("Token missing sub claim")
        return claims

    def subscriber_id(self, token: str) -> str:
        return str(self.verify(token)["sub"])

    def issue(self, subscriber_id: str, expires_in: int = 3600) -> str:
        """Mint a token; used by tooling and tests."""
        now = int(time.time())
        claims: Dict[str, Any] = {"sub": subscriber_id, "iat": now, "exp": now + expires_in}
        if self.audience:
            claims["aud"] = self.audience
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)
