from typing import Iterable
from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from backend.common.constants import request_id_ctx
from backend.common.utils import build_error, json_error
from backend.user.dependencies import Authentication
from backend.user.repository import  identify_user_by_pid
from backend.middlewares.constants import logger


class AuthenticationMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, session_maker, paths: Iterable[str]):
        super().__init__(app)
        self.session_maker = session_maker
        self.paths = tuple(paths)
        self.authenticate = Authentication()

    async def dispatch(self, request: Request, call_next):

        if request.url.path.startswith(self.paths):
            return await call_next(request)

        rid = request_id_ctx.get(None)
        try:
            auth_token = await self.authenticate(request)
        except HTTPException as e:
            logger.warning("auth.middleware.failed", extra={
                "reason": e.detail,
                "path": request.url.path,
                "method": request.method
            })
            payload = build_error("Missing or invalid auth credentials", code="INVALID_AUTH", request_id=rid)
            return json_error(payload, status_code=status.HTTP_401_UNAUTHORIZED)

        user_pid = auth_token.get("sub")

        async with self.session_maker() as session:
            user_identifier=await identify_user_by_pid(session,user_pid)

        if not user_identifier:
            logger.warning("auth.middleware.user_not_found", extra={
                "user_public_id": user_pid,
                "path": request.url.path
            })
            payload = build_error("User unidentified and not authorized", code="INVALID_AUTH", request_id=rid)
            return json_error(payload, status_code=status.HTTP_403_FORBIDDEN)

        request.state.user_identifier = user_identifier
        request.state.user_public_id = user_pid

        return await call_next(request)
