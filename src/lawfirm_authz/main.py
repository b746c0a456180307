import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lawfirm_authz.admission.limiter import AdmissionController
from lawfirm_authz.admission.middleware import admission_middleware
from lawfirm_authz.admission.stores import RedisWindowStore
from lawfirm_authz.auth.resolver import PrincipalResolver
from lawfirm_authz.auth.revocation import RevocationList
from lawfirm_authz.configs.logging_config import get_logger, setup_logging
from lawfirm_authz.configs.settings import Settings, get_settings
from lawfirm_authz.errors import AppError, RateLimitError
from lawfirm_authz.repositories.audit_repository import AuditRepository
from lawfirm_authz.repositories.directory_repository import DirectoryRepository
from lawfirm_authz.repositories.mongo import get_mongo_client, get_mongo_db
from lawfirm_authz.repositories.postgres import get_engine, get_session_factory
from lawfirm_authz.repositories.redis_client import redis_client
from lawfirm_authz.repositories.tenant_gateway import (
    TenantScopedGateway,
    apply_row_policies,
    verify_row_policies,
)
from lawfirm_authz.routers.admin_router import router as admin_router
from lawfirm_authz.routers.auth_router import router as auth_router
from lawfirm_authz.routers.documents_router import router as documents_router
from lawfirm_authz.routers.health_router import router as health_router
from lawfirm_authz.services.impersonation_service import ImpersonationService
from lawfirm_authz.utils.request_meta import request_id as request_id_of
from lawfirm_authz.utils.response import failure

log = get_logger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="lawfirm_authz", version="0.1.0")
    settings: Settings = get_settings()
    # Normalize CORS origins from settings (.env can provide a comma-separated string)
    raw_origins = settings.CORS_ORIGINS
    if isinstance(raw_origins, str):
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    elif isinstance(raw_origins, (list, tuple, set)):
        origins = list(raw_origins)
    else:
        origins = []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Admission runs before routing, so before any guard resolves a principal.
    app.middleware("http")(admission_middleware)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        start = time.perf_counter()
        method = request.method
        path = request.url.path
        request_id = request_id_of(request)

        log.info("request.start method=%s path=%s request_id=%s", method, path, request_id)
        response = None
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = int((time.perf_counter() - start) * 1000)
            log.info(
                "request.end method=%s path=%s status=%s request_id=%s elapsed_ms=%s",
                method,
                path,
                getattr(response, "status_code", "unknown"),
                request_id,
                elapsed_ms,
            )
        return response

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(documents_router)

    @app.exception_handler(AppError)
    async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
        log.info(
            "request.error type=app_error status=%s code=%s message=%s",
            exc.http_status,
            exc.code,
            exc.message,
        )
        headers = None
        if isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(max(exc.retry_after, 1))}
        return JSONResponse(
            status_code=exc.http_status, content=failure(exc.message, exc.code), headers=headers
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error: %s", str(exc))
        return JSONResponse(status_code=500, content=failure("internal server error", "internal_error"))

    @app.on_event("startup")
    async def startup() -> None:
        setup_logging()
        settings: Settings = get_settings()

        mongo_client = get_mongo_client(settings)
        mongo_db = get_mongo_db(mongo_client, settings)
        await redis_client.connect()
        engine = get_engine(settings)
        session_factory = get_session_factory(engine)

        app.state.settings = settings
        app.state.mongo_client = mongo_client
        app.state.mongo_db = mongo_db
        app.state.redis = redis_client.client
        app.state.engine = engine

        if settings.apply_row_policies_on_startup:
            log.info("startup.apply_row_policies begin")
            await apply_row_policies(session_factory, settings.tenant_scoped_tables)
        if settings.verify_row_policies_on_startup:
            log.info("startup.verify_row_policies begin")
            await verify_row_policies(session_factory, settings.tenant_scoped_tables)
        app.state.gateway = TenantScopedGateway(session_factory)

        directory = DirectoryRepository(mongo_db, settings)
        audit_repo = AuditRepository(mongo_db, settings)
        log.info("startup.ensure_indexes begin")
        await directory.ensure_indexes()
        await audit_repo.ensure_indexes()
        log.info("startup.ensure_indexes done")
        app.state.directory = directory
        app.state.audit_sink = audit_repo

        revocations = RevocationList(redis_client.client, prefix=settings.redis_key_prefix)
        app.state.resolver = PrincipalResolver(directory, settings, revocations=revocations)
        app.state.impersonation = ImpersonationService(
            directory, audit_repo, settings, revocations=revocations
        )
        app.state.admission = AdmissionController(
            settings.rate_limits,
            RedisWindowStore(redis_client.client, prefix=settings.redis_key_prefix),
        )
        log.info(
            "startup.done environment=%s policies=%s",
            settings.ENVIRONMENT,
            sorted(settings.rate_limits.keys()),
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("shutdown.begin")
        await redis_client.close()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        mongo_client = getattr(app.state, "mongo_client", None)
        if mongo_client is not None:
            mongo_client.close()
        log.info("shutdown.done")

    return app


app = create_app()
