from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, APIKeyHeader
from .jwt_handler import verify_access_token
from .api_key import verify_api_key

# Bearer token issued by the identity service; only the subject is used here
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

api_key_header = APIKeyHeader(name="X-Internal-API-Key", auto_error=False)


async def get_current_user(token: str = Depends(oauth2_scheme)) -> int:
    """Dependency to validate the JWT and return the acting user's id (sub)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    payload = verify_access_token(token)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception

    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        raise credentials_exception


async def verify_internal_api_key(api_key: str = Depends(api_key_header)) -> bool:
    """Dependency to validate service-to-service internal requests."""
    if not verify_api_key(api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing X-Internal-API-Key header"
        )
    return True
