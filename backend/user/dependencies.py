from typing import Optional
from fastapi import Request,HTTPException,status
from fastapi.security import HTTPBearer

from jose import jwt, JWTError
from backend.config.settings import config_settings

ACCESS_COOKIE_NAME = "accessToken"


class Authentication(HTTPBearer):
    """Bearer header first, then the access token cookie set by the web client."""

    def __init__(self,auto_error=False):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request:Request) -> dict:
        auth_creds=await super().__call__(request)
        token=auth_creds.credentials if auth_creds else request.cookies.get(ACCESS_COOKIE_NAME)

        if not token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Not authenticated")

        decoded_token=self.decode_token(token)

        if not decoded_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Invalid or expired token provided.")

        return decoded_token

    def decode_token(self,token:str) -> Optional[dict]:
        """To verify the signature , expiration and user claims of token"""
        try:
            return jwt.decode(
            token,
            key=config_settings.JWT_SECRET,
            algorithms=[config_settings.JWT_ALGO]
            )
        except JWTError:
            return None


def current_user_id(request: Request) -> int:
    user_id = getattr(request.state, "user_identifier", None)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Not authenticated")
    return user_id
