"""Password hashing and token signing capabilities.

Both are plain objects handed to AuthManager so tests (or another deployment)
can swap in different implementations.
"""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from jose import jwt

from errors import AuthError

class SessionExpiredError(AuthError):
    """Raised when a session has expired."""
    pass

class InvalidTokenError(AuthError):
    """Raised when a token cannot be decoded or fails signature checks."""
    pass

class PasswordHasher:
    """Salted PBKDF2-HMAC-SHA256 password hashing."""

    algorithm = 'pbkdf2_sha256'

    def __init__(self, iterations: int = 260000, salt_bytes: int = 16):
        self.iterations = iterations
        self.salt_bytes = salt_bytes

    def hash(self, password: str) -> str:
        """Hash a password, returning 'pbkdf2_sha256$iterations$salt$digest'."""
        salt = secrets.token_hex(self.salt_bytes)
        digest = self._digest(password, salt, self.iterations)
        return f"{self.algorithm}${self.iterations}${salt}${digest}"

    def verify(self, password: str, encoded: str) -> bool:
        """Check a password against an encoded hash."""
        try:
            algorithm, iterations, salt, digest = encoded.split('$', 3)
            iterations = int(iterations)
        except (AttributeError, ValueError):
            return False
        if algorithm != self.algorithm:
            return False
        return hmac.compare_digest(digest, self._digest(password, salt, iterations))

    @staticmethod
    def _digest(password: str, salt: str, iterations: int) -> str:
        return hashlib.pbkdf2_hmac(
            'sha256',
            password.encode('utf-8'),
            salt.encode('utf-8'),
            iterations
        ).hex()

class TokenSigner:
    """Issues and verifies signed JWT session tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_minutes: int = 60):
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_minutes = expiry_minutes

    def issue(
        self,
        user_id: str,
        role: str,
        now: Optional[datetime] = None
    ) -> Tuple[str, datetime]:
        """Sign a token for a user.

        Args:
            user_id: Subject of the token
            role: Role claim
            now: Issue time, defaults to the current UTC time

        Returns:
            Tuple of (token, expires_at)
        """
        now = now or datetime.now(timezone.utc)
        expires_at = now + timedelta(minutes=self.expiry_minutes)
        token = jwt.encode(
            {
                'sub': str(user_id),
                'role': role,
                'iat': int(now.timestamp()),
                'exp': int(expires_at.timestamp()),
                'jti': secrets.token_hex(8)
            },
            self.secret,
            algorithm=self.algorithm
        )
        return token, expires_at

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify a token and return its claims.

        Raises:
            SessionExpiredError: If the token has expired
            InvalidTokenError: If the token is malformed or badly signed
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise SessionExpiredError("Session has expired")
        except jwt.JWTError as e:
            raise InvalidTokenError(f"Invalid token: {str(e)}")

        if not payload.get('sub'):
            raise InvalidTokenError("Invalid token: missing subject")
        return payload
