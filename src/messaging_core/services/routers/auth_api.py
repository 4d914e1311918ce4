from fastapi import HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError, ExpiredSignatureError
import logging
import uuid

from messaging_core.services.models import Principal


class AuthAPI:
    """
    Resolves the caller from a bearer token issued by the identity service.

    Tokens are only verified here, never issued. The payload must carry
    ``sub`` (user id), ``username`` and ``type == "access"``.

    Attributes:
        SECRET_KEY (str): Shared key the identity service signs tokens with
        ALGORITHM (str): JWT signing algorithm
        oauth2_scheme (OAuth2PasswordBearer): Extracts the bearer token
    """

    def __init__(
            self,
            secret_key: str,
            logger: logging.Logger,
            algorithm: str = "HS256"
    ):
        self.SECRET_KEY = secret_key
        self.ALGORITHM = algorithm
        self.logger = logger
        self.oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

    async def get_current_principal(self, token: str) -> Principal:
        """
        Validate JWT token and extract the caller.
        Args:
            token: JWT token string
        Returns:
            Principal: user id and username from the token
        Raises:
            HTTPException: If token is invalid, expired, or has wrong type
        """
        try:
            payload = jwt.decode(token, self.SECRET_KEY, algorithms=[self.ALGORITHM])

            if payload.get("type") != "access":
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid token type"
                )

            user_id = payload.get("sub")
            username = payload.get("username")
            if user_id is None or not username:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid authentication credentials",
                )
            return Principal(user_id=uuid.UUID(user_id), username=username)
        except ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token expired"
            )
        except (JWTError, ValueError) as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
            ) from e
