from contextlib import asynccontextmanager
from fastapi import FastAPI
from backend.api.routers import public_routers,admin_routers
from backend.common.custom_exceptions import register_all_exceptions
from backend.common.logging_setup import setup_logging, shutdown_logging
from backend.middlewares.auth_middleware import AuthenticationMiddleware
from backend.middlewares.request_id_middleware import RequestIdMiddleware
from backend.db.connection import async_engine,async_session
from backend.api import version_prefix,cur_version
from backend.config.admin_config import admin_config


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    try:
        yield
    finally:
        await async_engine.dispose()
        shutdown_logging()


def create_app():
    app=FastAPI(
        title="Grocer",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    # provider webhooks authenticate by signature, admin routes by X-Admin-Secret
    app.add_middleware(AuthenticationMiddleware,session_maker=async_session,paths=[f"{version_prefix}/health",
                                                                                   f"{version_prefix}/order/webhook",
                                                                                   f"{version_prefix}/order/paypal-webhook",
                                                                                   f"{version_prefix}/admin",
                                                                                   "/docs", "/openapi.json"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app=create_app()
