from datetime import datetime, timedelta, timezone

import jwt

from medbook.core import config

REQUIRED_CLAIMS = ['sub', 'exp']


def create_access_token(
    subject: str,
    role: str | None = None,
    organization_id: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Issue a bearer token; ``organization_id`` pins it to one tenant when given."""
    issued_at = datetime.now(timezone.utc)
    payload = {
        'sub': subject,
        'iat': issued_at,
        'exp': issued_at + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES),
    }
    if role:
        payload['role'] = role
    if organization_id:
        payload['org'] = organization_id
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={'require': REQUIRED_CLAIMS},
    )
