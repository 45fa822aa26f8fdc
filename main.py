"""
Application factory for the membership portal's auth backend.

Run with:
    uvicorn main:create_app --factory

Secrets come from Vault unless dependencies are passed in (tests).
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.base import success_response
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import create_auth_router
from auth.callback import create_callback_router
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import PersistenceError
from auth.otp import OTPService
from auth.provider import IdentityProvider
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import RouteAccessMiddleware
from auth.service import AuthService
from auth.session import SessionVerifier
from clients.email_client import BrevoEmailClient
from clients.postgres_client import PostgresClient
from clients.supabase_client import SupabaseIdentityProvider, create_supabase_clients
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_supabase_config,
    get_valkey_url,
)

logger = logging.getLogger(__name__)


def _supabase_provider_factory(supabase_config: dict) -> Callable[[], IdentityProvider]:
    def factory() -> IdentityProvider:
        public, admin = create_supabase_clients(
            supabase_config["url"],
            supabase_config["anon_key"],
            supabase_config.get("service_role_key"),
        )
        return SupabaseIdentityProvider(public, admin)

    return factory


def create_app(
    config: AuthConfig | None = None,
    postgres: PostgresClient | None = None,
    valkey: ValkeyClient | None = None,
    email_client: BrevoEmailClient | None = None,
    provider_factory: Callable[[], IdentityProvider] | None = None,
    verifier: SessionVerifier | None = None,
) -> FastAPI:
    """Wire clients, services, middleware and routers into a FastAPI app."""
    config = config or AuthConfig()

    if provider_factory is None or verifier is None:
        supabase_config = get_supabase_config()
        provider_factory = provider_factory or _supabase_provider_factory(supabase_config)
        verifier = verifier or SessionVerifier(supabase_config["jwt_secret"])

    if postgres is None:
        postgres = PostgresClient(get_database_url())
    if valkey is None:
        valkey = ValkeyClient(get_valkey_url())
    if email_client is None:
        email_config = get_email_config()
        email_client = BrevoEmailClient(
            api_key=email_config["api_key"],
            sender_email=email_config["sender_email"],
            sender_name=email_config.get("sender_name") or config.app_name,
        )

    auth_db = AuthDatabase(postgres)
    otp_service = OTPService(auth_db, config)
    rate_limiter = RateLimiter(valkey, config)
    security_logger = SecurityLogger(postgres)

    def auth_service_factory() -> AuthService:
        return AuthService(config, provider_factory(), auth_db)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: drop OTP codes that expired while the app was down.
        Shutdown: close the connection pool and Valkey connection.
        """
        try:
            otp_service.sweep_expired()
        except PersistenceError as e:
            logger.error(f"Startup OTP sweep failed: {e}")
        yield
        postgres.close()
        valkey.close()

    app = FastAPI(title=f"{config.app_name} Auth", version="0.1.0", lifespan=lifespan)

    register_error_handlers(app)

    # Last added runs first: request id, then CORS, then route access
    app.add_middleware(RouteAccessMiddleware, verifier=verifier, config=config)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.app_base_url.rstrip("/")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.include_router(
        create_auth_router(
            config=config,
            otp_service=otp_service,
            auth_service_factory=auth_service_factory,
            email_client=email_client,
            rate_limiter=rate_limiter,
            security_logger=security_logger,
        ),
        prefix="/api/auth",
    )
    app.include_router(create_callback_router(config, auth_service_factory, security_logger))

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return success_response({"status": "ok"})

    return app
