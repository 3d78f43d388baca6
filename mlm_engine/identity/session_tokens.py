# mlm_engine/identity/session_tokens.py
"""
Session tokens handed back after signup: HS256 JWTs carrying sub/iat/exp.
"""
import time
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from mlm_engine.errors import InvalidArgument

ALGORITHM = "HS256"


class SessionTokenSigner:

    def __init__(self, secret: str, ttl: int = 3600):
        if not secret:
            raise ValueError("SESSION_TOKEN_SECRET must be set")
        self.secret = secret
        self.ttl = ttl

    def issue(self, subject: str, now: Optional[int] = None) -> str:
        issuedAt = int(now if now is not None else time.time())
        claims = {"sub": subject, "iat": issuedAt, "exp": issuedAt + self.ttl}
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM)

    def verify(self, token: str, now: Optional[int] = None) -> str:
        """Return the token subject or raise InvalidArgument."""
        # An explicit clock replaces the library's own expiry check
        options = {"verify_exp": now is None}
        try:
            claims = jwt.decode(token, self.secret, algorithms=[ALGORITHM], options=options)
        except ExpiredSignatureError:
            raise InvalidArgument("Session token expired")
        except JWTError as e:
            raise InvalidArgument(f"Invalid session token: {e}")

        if now is not None and claims.get("exp", 0) < int(now):
            raise InvalidArgument("Session token expired")
        if not claims.get("sub"):
            raise InvalidArgument("Malformed session token")
        return claims["sub"]
