from datetime import datetime, timedelta, timezone

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from . import config
from .errors import AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)


# Create JWT access token for an authenticated voter
def create_access_token(voter_id: str, expires_minutes: int = config.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = {"sub": voter_id}
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


# Decode a token issued by the identity provider and return the voter id
def decode_access_token(token: str) -> str:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token.") from e
    voter_id = payload.get("sub")
    if not voter_id:
        raise AuthenticationError("Token does not identify a voter.")
    return voter_id


def get_current_voter(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> str:
    if credentials is None:
        raise AuthenticationError("Missing bearer token.")
    return decode_access_token(credentials.credentials)
