"""Tests for the auth module."""

import uuid
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone

from auth import (
    AuthManager,
    PasswordHasher,
    TokenSigner,
    InvalidCredentialsError,
    InvalidPasswordError,
    require_roles
)
from auth.security import SessionExpiredError, InvalidTokenError
from errors import AuthError, ConflictError, ForbiddenError, ValidationError

from conftest import make_user_row

SECRET = "test-secret"
PASSWORD = "scrap-metal-42"

@pytest.fixture
def hasher():
    """A fast hasher for tests."""
    return PasswordHasher(iterations=1000)

@pytest.fixture
def signer():
    return TokenSigner(SECRET, expiry_minutes=60)

@pytest_asyncio.fixture
async def auth_manager(pool, hasher, signer):
    """Create an AuthManager on the fake pool."""
    return AuthManager(pool=pool, hasher=hasher, signer=signer)

def test_password_hash_round_trip(hasher):
    """Hashes are salted and only the right password verifies."""
    encoded = hasher.hash(PASSWORD)

    assert PASSWORD not in encoded
    assert encoded.startswith('pbkdf2_sha256$1000$')
    assert encoded != hasher.hash(PASSWORD)
    assert hasher.verify(PASSWORD, encoded)
    assert not hasher.verify('wrong-password', encoded)
    assert not hasher.verify(PASSWORD, 'not-a-hash')

def test_token_claims(signer):
    """Issued tokens carry the subject and role."""
    user_id = str(uuid.uuid4())
    token, expires_at = signer.issue(user_id, 'buyer')

    claims = signer.decode(token)
    assert claims['sub'] == user_id
    assert claims['role'] == 'buyer'
    assert claims['exp'] == int(expires_at.timestamp())

def test_expired_token(signer):
    """Tokens past their expiry are rejected as expired sessions."""
    token, _ = signer.issue('user', 'buyer', now=datetime.now(timezone.utc) - timedelta(hours=2))

    with pytest.raises(SessionExpiredError):
        signer.decode(token)

def test_token_from_other_secret(signer):
    """Tokens signed with another secret are invalid."""
    token, _ = TokenSigner('other-secret').issue('user', 'buyer')

    with pytest.raises(InvalidTokenError):
        signer.decode(token)

    with pytest.raises(InvalidTokenError):
        signer.decode('garbage')

@pytest.mark.asyncio
async def test_register(auth_manager, conn):
    """Test registering a buyer opens a session."""
    row = make_user_row()
    conn.fetchval.side_effect = [False]
    conn.fetchrow.return_value = row

    result = await auth_manager.register(
        name=row['name'],
        email='  Ada@Example.com ',
        password=PASSWORD,
        address={'street': row['address_street'], 'city': row['address_city']}
    )

    assert result['user']['id'] == str(row['id'])
    assert 'password_hash' not in result['user']
    assert result['token']
    assert result['expires_at']

    insert_args = conn.fetchrow.await_args.args
    assert insert_args[2] == 'ada@example.com'
    assert insert_args[3] != PASSWORD
    assert insert_args[4] == 'buyer'

    # Old sessions revoked, new session stored
    assert conn.execute.await_count == 2
    assert conn.execute.await_args.args[2] == result['token']

@pytest.mark.asyncio
async def test_register_duplicate_email(auth_manager, conn):
    """Test registering an email twice."""
    conn.fetchval.side_effect = [True]

    with pytest.raises(ConflictError) as exc:
        await auth_manager.register(name='Ada', email='ada@example.com', password=PASSWORD)
    assert exc.value.message == "User already exists"

@pytest.mark.asyncio
async def test_register_privileged_role_after_bootstrap(auth_manager, conn):
    """Test that administrators can't be self-registered once users exist."""
    conn.fetchval.side_effect = [False, 4]

    with pytest.raises(ForbiddenError):
        await auth_manager.register(
            name='Eve', email='eve@example.com', password=PASSWORD, role='super_user'
        )

    conn.fetchrow.assert_not_awaited()

@pytest.mark.asyncio
async def test_register_first_user_as_admin(auth_manager, conn):
    """Test that the first account may take an administrative role."""
    row = make_user_row(role='system_admin')
    conn.fetchval.side_effect = [False, 0]
    conn.fetchrow.return_value = row

    result = await auth_manager.register(
        name='Root', email='root@example.com', password=PASSWORD, role='system_admin'
    )

    assert result['user']['role'] == 'system_admin'

@pytest.mark.asyncio
async def test_register_invalid_input(auth_manager, conn):
    """Test input checks run before any query."""
    with pytest.raises(InvalidPasswordError):
        await auth_manager.register(name='Ada', email='ada@example.com', password='123')

    with pytest.raises(ValidationError) as exc:
        await auth_manager.register(name='Ada', email='not-an-email', password=PASSWORD)
    assert exc.value.message == "Please use a valid email address"

    with pytest.raises(ValidationError):
        await auth_manager.register(
            name='Ada', email='ada@example.com', password=PASSWORD, role='pirate'
        )

    conn.fetchval.assert_not_awaited()

@pytest.mark.asyncio
async def test_login(auth_manager, conn, hasher):
    """Test logging in with the right password."""
    row = dict(make_user_row(), password_hash=hasher.hash(PASSWORD))
    conn.fetchrow.return_value = row

    result = await auth_manager.login('ada@example.com', PASSWORD)

    assert result['user']['email'] == row['email']
    assert result['token']
    assert conn.transactions == 1

@pytest.mark.asyncio
async def test_login_wrong_password(auth_manager, conn, hasher):
    """Test logging in with the wrong password."""
    conn.fetchrow.return_value = dict(make_user_row(), password_hash=hasher.hash(PASSWORD))

    with pytest.raises(InvalidCredentialsError) as exc:
        await auth_manager.login('ada@example.com', 'nope-nope')
    assert exc.value.message == "Invalid credentials"
    conn.execute.assert_not_awaited()

@pytest.mark.asyncio
async def test_login_unknown_email(auth_manager, conn):
    """Test logging in as nobody."""
    conn.fetchrow.return_value = None

    with pytest.raises(InvalidCredentialsError):
        await auth_manager.login('ghost@example.com', PASSWORD)

@pytest.mark.asyncio
async def test_verify_session_reads_role_from_users(auth_manager, conn, signer):
    """Test that the stored role wins over the role claim."""
    user_id = str(uuid.uuid4())
    token, _ = signer.issue(user_id, 'buyer')
    conn.fetchrow.return_value = {
        'expires_at': datetime.now(timezone.utc) + timedelta(minutes=30),
        'role': 'auction_manager'
    }

    session = await auth_manager.verify_session(token)

    assert session == {'user_id': user_id, 'role': 'auction_manager'}

@pytest.mark.asyncio
async def test_verify_session_revoked(auth_manager, conn, signer):
    """Test a token whose session was revoked by logout."""
    token, _ = signer.issue(str(uuid.uuid4()), 'buyer')
    conn.fetchrow.return_value = None

    with pytest.raises(AuthError):
        await auth_manager.verify_session(token)

def test_require_roles_rejects_unknown_role():
    """Route gates may only name known roles."""
    with pytest.raises(ValueError):
        require_roles('buyer', 'overlord')
