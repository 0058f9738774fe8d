from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt

from shared.config.settings import JWT_ALGORITHM, JWT_SECRET_KEY

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def _secret_key() -> str:
    # Resolved per call so the service can boot (and tests can import) without a key
    if not JWT_SECRET_KEY:
        raise RuntimeError("JWT_SECRET_KEY is not set in the environment")
    return JWT_SECRET_KEY


def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    """Creates a JWT access token with a UTC expiration."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, _secret_key(), algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> dict | None:
    """Decodes and verifies the JWT. Returns payload if valid, None if invalid/expired."""
    try:
        return jwt.decode(token, _secret_key(), algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
