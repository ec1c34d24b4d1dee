import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .settings import get_settings
from .db import init_db
from .errors import NyxError, handle_nyx_error
from .services.auth import router as auth_router
from .services.notifications import LogChannel, NotificationDispatcher, ToastInbox, WebhookChannel
from .services.notifications import router as notifications_router
from .services.preferences import ClientStateStore
from .services.preferences import router as preferences_router
from .services.profiles import router as profiles_router
from .services.rest_timer import RestTimerService
from .services.rest_timer import router as rest_timer_router
from .services.stats import router as stats_router
from .services.storage import router as storage_router
from .services.weights import router as weights_router
from .services.workouts import router as workouts_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("nyx")

app = FastAPI(title="Nyx Fitness")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(NyxError, handle_nyx_error)

app.include_router(auth_router, prefix="/api")
app.include_router(profiles_router, prefix="/api")
app.include_router(workouts_router, prefix="/api")
app.include_router(weights_router, prefix="/api")
app.include_router(storage_router, prefix="/api")
app.include_router(preferences_router, prefix="/api")
app.include_router(rest_timer_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(stats_router, prefix="/api")


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()

    toasts = ToastInbox()
    channels = [toasts, LogChannel()]
    webhook = None
    if settings.push_webhook_url:
        webhook = WebhookChannel(settings.push_webhook_url)
        channels.append(webhook)

    scheduler = AsyncIOScheduler()
    scheduler.start()

    client_state = ClientStateStore(settings.state_file)
    app.state.client_state = client_state
    app.state.toasts = toasts
    app.state.webhook = webhook
    app.state.scheduler = scheduler
    app.state.rest_timers = RestTimerService(client_state, NotificationDispatcher(channels), scheduler)
    logger.info("startup: ready (database=%s)", settings.database_url)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    app.state.scheduler.shutdown(wait=False)
    if app.state.webhook is not None:
        await app.state.webhook.close()
