"""Authentication module using password credentials and signed session tokens.

This module provides:
1. Registration and password login
2. Single active session per user
3. Dependencies for protecting routes and gating them by role
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable

from asyncpg import PostgresError
from asyncpg.exceptions import UniqueViolationError
from fastapi import Request, HTTPException, status, Depends, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import settings_conf
from database import get_pool
from database.exceptions import DatabaseError
from errors import AuthError, ForbiddenError, MarketplaceError, ValidationError
from errors.validation import require_text, require_choice
from users import (
    ROLES, PRIVILEGED_ROLES, DEFAULT_ROLE, USER_COLUMNS, DuplicateEmailError,
    user_to_dict, normalize_email, normalize_address
)
from .security import PasswordHasher, TokenSigner, SessionExpiredError, InvalidTokenError

# Configure logging
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

class InvalidCredentialsError(AuthError):
    """Raised when an email/password pair does not match."""
    pass

class InvalidPasswordError(ValidationError):
    """Raised when a new password does not meet requirements."""
    pass

class AuthManager:
    """Manages registration, login and sessions."""

    def __init__(
        self,
        pool=None,
        hasher: Optional[PasswordHasher] = None,
        signer: Optional[TokenSigner] = None
    ):
        """Initialize auth manager.

        Args:
            pool: Optional database pool. If not provided, will get from database module.
            hasher: Password hashing capability
            signer: Token signing capability
        """
        self.pool = pool
        self.hasher = hasher or PasswordHasher()
        self.signer = signer or TokenSigner(
            settings_conf['jwt_secret'],
            settings_conf['jwt_algorithm'],
            settings_conf['token_expiry_minutes']
        )

    async def ensure_pool(self):
        """Ensure database pool is available."""
        if not self.pool:
            self.pool = await get_pool()

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        role: str = DEFAULT_ROLE,
        address: Optional[Dict[str, Any]] = None,
        phone: Optional[str] = None,
        request: Optional[Request] = None
    ) -> Dict[str, Any]:
        """Register a new user and open a session for them.

        Privileged roles can only be self-assigned by the very first account,
        which bootstraps administration of an empty marketplace.

        Returns:
            Dict containing:
                - user: The created user
                - token: Session token for future requests
                - expires_at: Session expiration timestamp

        Raises:
            ValidationError: If a field is missing or malformed
            DuplicateEmailError: If the email is already registered
            ForbiddenError: If a privileged role is requested outside bootstrap
        """
        name = require_text(name, 'name')
        email = normalize_email(email)
        role = require_choice(role or DEFAULT_ROLE, ROLES, 'role')
        address = normalize_address(address)
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    exists = await conn.fetchval(
                        'SELECT EXISTS(SELECT 1 FROM users WHERE email = $1)',
                        email
                    )
                    if exists:
                        raise DuplicateEmailError("User already exists")

                    if role in PRIVILEGED_ROLES:
                        user_count = await conn.fetchval('SELECT COUNT(*) FROM users')
                        if user_count:
                            raise ForbiddenError(
                                f"Role {role} must be granted by an administrator"
                            )

                    row = await conn.fetchrow(
                        f'''
                        INSERT INTO users (
                            name, email, password_hash, role,
                            address_street, address_city, address_country, phone
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                        RETURNING {USER_COLUMNS}
                        ''',
                        name,
                        email,
                        self.hasher.hash(password),
                        role,
                        address['street'],
                        address['city'],
                        address['country'],
                        phone
                    )

                    session = await self._create_session(conn, row['id'], row['role'], request)

            logger.info(f"Registered user {row['id']} with role {role}")
            return {'user': user_to_dict(row), **session}

        except MarketplaceError:
            raise
        except UniqueViolationError:
            raise DuplicateEmailError("User already exists")
        except PostgresError as e:
            logger.error(f"Error registering user: {e}")
            raise DatabaseError(f"Failed to register user: {str(e)}")

    async def login(
        self,
        email: str,
        password: str,
        request: Optional[Request] = None
    ) -> Dict[str, Any]:
        """Verify credentials and create a session.

        Returns:
            Dict containing user, token and expires_at

        Raises:
            InvalidCredentialsError: If the email or password is wrong
        """
        await self.ensure_pool()

        email = (email or '').strip().lower()

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f'SELECT {USER_COLUMNS}, password_hash FROM users WHERE email = $1',
                    email
                )

                if not row or not self.hasher.verify(password or '', row['password_hash']):
                    raise InvalidCredentialsError("Invalid credentials")

                async with conn.transaction():
                    session = await self._create_session(conn, row['id'], row['role'], request)

            logger.info(f"User {row['id']} logged in")
            return {'user': user_to_dict(row), **session}

        except MarketplaceError:
            raise
        except PostgresError as e:
            logger.error(f"Error logging in: {e}")
            raise DatabaseError(f"Failed to log in: {str(e)}")

    async def _create_session(
        self,
        conn,
        user_id,
        role: str,
        request: Optional[Request] = None
    ) -> Dict[str, Any]:
        """Revoke existing sessions for a user and store a new one."""
        token, expires_at = self.signer.issue(str(user_id), role)

        await conn.execute(
            '''
            UPDATE auth_sessions
            SET revoked = true, revoked_at = now()
            WHERE user_id = $1 AND NOT revoked
            ''',
            user_id
        )

        await conn.execute(
            '''
            INSERT INTO auth_sessions (
                user_id, token, expires_at,
                user_agent, ip_address
            ) VALUES ($1, $2, $3, $4, $5)
            ''',
            user_id,
            token,
            expires_at,
            request.headers.get('user-agent') if request else None,
            request.client.host if request and request.client else None
        )

        return {
            'token': token,
            'expires_at': expires_at.isoformat()
        }

    async def verify_session(
        self,
        token: str,
        request: Optional[Request] = None
    ) -> Dict[str, Any]:
        """Verify a session token.

        The role is read from the users table so role changes apply to
        existing sessions.

        Returns:
            Dict with user_id and role

        Raises:
            SessionExpiredError: If session has expired
            AuthError: For other verification errors
        """
        payload = self.signer.decode(token)
        user_id = payload['sub']

        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                session = await conn.fetchrow(
                    '''
                    SELECT
                        s.expires_at,
                        u.role
                    FROM auth_sessions s
                    JOIN users u ON u.id = s.user_id
                    WHERE s.user_id = $1 AND s.token = $2
                    AND NOT s.revoked
                    ''',
                    user_id,
                    token
                )

                if not session:
                    raise AuthError("Session not found or revoked")

                if session['expires_at'] < datetime.now(timezone.utc):
                    raise SessionExpiredError("Session has expired")

                if request:
                    await conn.execute(
                        '''
                        UPDATE auth_sessions
                        SET
                            last_used_at = now(),
                            user_agent = $3,
                            ip_address = $4
                        WHERE user_id = $1 AND token = $2
                        ''',
                        user_id,
                        token,
                        request.headers.get('user-agent'),
                        request.client.host if request.client else None
                    )

                return {'user_id': user_id, 'role': session['role']}

        except MarketplaceError:
            raise
        except Exception as e:
            logger.error(f"Error verifying session: {e}")
            raise AuthError(f"Failed to verify session: {str(e)}")

    async def logout(self, user_id: str):
        """Log out by revoking the active session.

        Args:
            user_id: User to log out
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    '''
                    UPDATE auth_sessions
                    SET revoked = true, revoked_at = now()
                    WHERE user_id = $1
                    AND NOT revoked
                    ''',
                    user_id
                )
            logger.info(f"User {user_id} logged out")
        except PostgresError as e:
            logger.error(f"Error logging out: {e}")
            raise DatabaseError(f"Failed to log out: {str(e)}")

# Create global instance
manager = AuthManager()

# FastAPI security scheme
auth_scheme = HTTPBearer(
    auto_error=False,
    description="JWT Bearer token required"
)

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme)
) -> Dict[str, Any]:
    """FastAPI dependency for getting authenticated user.

    Args:
        request: The FastAPI request
        credentials: Bearer token credentials

    Returns:
        Dict with user_id and role

    Raises:
        HTTPException: If authentication fails
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization token is required"
        )
    try:
        return await manager.verify_session(credentials.credentials, request)
    except SessionExpiredError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session has expired"
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message
        )

def require_roles(*roles: str) -> Callable:
    """Build a dependency that only admits callers holding one of roles.

    Args:
        roles: Allowed role names

    Returns:
        FastAPI dependency returning the authenticated user
    """
    unknown = set(roles) - set(ROLES)
    if unknown:
        raise ValueError(f"Unknown roles: {', '.join(sorted(unknown))}")

    async def check_role(user: Dict[str, Any] = Security(get_current_user)) -> Dict[str, Any]:
        if user['role'] not in roles:
            raise ForbiddenError("Access denied: insufficient permissions")
        return user

    return check_role

# Export public interface
__all__ = [
    'manager',
    'AuthManager',
    'get_current_user',
    'require_roles',
    'PasswordHasher',
    'TokenSigner',
    'AuthError',
    'InvalidCredentialsError',
    'InvalidPasswordError',
    'InvalidTokenError',
    'SessionExpiredError'
]
