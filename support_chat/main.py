import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from support_chat.api.router import api_router
from support_chat.core.config import Settings, get_settings
from support_chat.core.db import close_engine, get_session_factory, init_engine
from support_chat.core.locks import ConversationLocks
from support_chat.core.logging_config import configure_logging
from support_chat.infra.notifications import LoggingNotificationSink, NotificationSink
from support_chat.services.notifier import OutboxNotifier

settings = get_settings()
settings.validate_security_settings()
logger = logging.getLogger(__name__)


async def relay_outbox(sink: NotificationSink, settings: Settings) -> None:
    session_factory = get_session_factory()
    while True:
        await asyncio.sleep(settings.outbox_relay_interval_seconds)
        try:
            async with session_factory() as session:
                notifier = OutboxNotifier(
                    session, sink=sink, max_attempts=settings.outbox_max_attempts
                )
                delivered = await notifier.relay(settings.outbox_relay_batch_size)
        except Exception:
            logger.warning("Outbox relay pass failed", exc_info=True)
            continue
        if delivered:
            logger.info("Outbox relay delivered %d notifications", delivered)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)

    # Initialize infrastructure
    engine = init_engine()
    app.state.db_engine = engine
    app.state.notification_sink = LoggingNotificationSink()
    app.state.conversation_locks = ConversationLocks()

    relay_task: asyncio.Task | None = None
    if settings.outbox_relay_enabled:
        relay_task = asyncio.create_task(
            relay_outbox(app.state.notification_sink, settings)
        )

    yield

    # Graceful shutdown
    if relay_task is not None:
        relay_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await relay_task
    await close_engine(engine)


app = FastAPI(
    title="Support Chat API",
    version="0.1.0",
    docs_url="/docs" if settings.app_env != "production" else None,
    redoc_url="/redoc" if settings.app_env != "production" else None,
    lifespan=lifespan,
)

if settings.trusted_hosts:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.trusted_hosts,
    )

if settings.force_https:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault(
        "Referrer-Policy",
        "strict-origin-when-cross-origin",
    )
    if settings.force_https:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=31536000; includeSubDomains",
        )
    return response


app.include_router(api_router, prefix="/api")


@app.get("/", tags=["meta"])
async def root() -> dict[str, str]:
    return {"service": "support-chat", "status": "ok"}
