from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

import jwt
from fastapi import HTTPException, status
from pydantic import BaseModel, ValidationError as PydanticValidationError

from .config import settings
from .models.enums import UserRole

# Configure logging
logger = logging.getLogger(__name__)

SECRET_KEY = settings.JWT_SECRET_KEY
ALGORITHM = settings.JWT_ALGORITHM


class Principal(BaseModel):
    """Identity resolved from a bearer token issued by the identity service"""

    user_id: str
    role: UserRole


class AuthService:
    @staticmethod
    def create_access_token(
        user_id: str, role: UserRole, expires_delta: Optional[timedelta] = None
    ) -> str:
        """Mint a token in the identity service's format (development and tests)"""
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
        to_encode = {
            "sub": user_id,
            "role": UserRole(role).value,
            "type": "access",
            "exp": expire,
        }
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def verify_token(token: str) -> Principal:
        """Verify JWT token and return the caller's identity"""
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            user_id = payload.get("sub")
            token_type = payload.get("type", "access")

            if not user_id or token_type != "access":
                raise credentials_exception

            return Principal(user_id=str(user_id), role=payload.get("role"))
        except (jwt.PyJWTError, PydanticValidationError) as e:
            logger.info(f"Rejected token: {str(e)}")
            raise credentials_exception
