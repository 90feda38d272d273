"""
CPX Research secure hash helpers.

Postbacks are signed as md5(trans_id + '-' + security_key); the offer wall
URL carries md5(user_id + '-' + security_key). The key must be configured
through CPX_SECURITY_HASH_KEY; there is no built-in fallback.
"""
import hashlib
import hmac
from typing import Optional
from urllib.parse import urlencode
from shared.config import config
from shared.errors import ConfigError


def _security_key(secret: Optional[str]) -> str:
    key = secret if secret is not None else config.CPX_SECURITY_HASH_KEY
    if not key:
        raise ConfigError('CPX_SECURITY_HASH_KEY is not configured')
    return key


def generate_secure_hash(value: str, secret: Optional[str] = None) -> str:
    """Hex md5 of '<value>-<security key>' (value is a trans_id or a user_id)."""
    hash_string = f'{value}-{_security_key(secret)}'
    return hashlib.md5(hash_string.encode('utf-8')).hexdigest()


def verify_secure_hash(trans_id: str, provided_hash: str, secret: Optional[str] = None) -> bool:
    """
    Check a postback hash, case-insensitively and in constant time.

    Raises:
        ConfigError: the security key is not configured
    """
    expected = generate_secure_hash(trans_id, secret)
    if not trans_id or not provided_hash:
        return False
    return hmac.compare_digest(expected.lower(), provided_hash.strip().lower())


def generate_wall_url(
    user_id: str,
    app_id: Optional[str] = None,
    username: str = '',
    email: str = '',
    subid1: str = '',
    subid2: str = '',
    message_id: Optional[str] = None,
    secret: Optional[str] = None,
    base_url: Optional[str] = None
) -> str:
    """Build the CPX offer wall iframe URL for a user."""
    params = {
        'app_id': app_id if app_id is not None else config.CPX_APP_ID,
        'ext_user_id': user_id,
        'secure_hash': generate_secure_hash(user_id, secret),
        'username': username or '',
        'email': email or '',
        'subid_1': subid1 or '',
        'subid_2': subid2 or '',
    }
    if message_id:
        params['message_id'] = message_id
    return f'{base_url or config.CPX_WALL_BASE_URL}?{urlencode(params)}'


def verify_bearer_token(authorization: Optional[str], expected_token: Optional[str] = None) -> bool:
    """
    Check an 'Authorization: Bearer <token>' header against WEBHOOK_SECRET_TOKEN.
    An unconfigured token rejects everything.
    """
    expected = expected_token if expected_token is not None else config.WEBHOOK_SECRET_TOKEN
    if not expected or not authorization:
        return False
    scheme, _, token = authorization.strip().partition(' ')
    if scheme.lower() != 'bearer' or not token:
        return False
    return hmac.compare_digest(token.strip().encode('utf-8'), expected.encode('utf-8'))
