import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .controllers import scheduled_messages, scheduling, zoom
from .database import SessionLocal, init_db
from .logging_utils import setup_logging
from .models import now
from .services.calendar_service import TeamupCalendarClient
from .services.live_state import LiveStateMachine
from .services.messaging_service import WhatsAppGatewayClient
from .services.notification_executor import NotificationExecutor
from .services.reminder_rebuilder import ReminderRebuilder
from .services.roster_service import WhatsAppRosterClient
from .services.subscriber_hub import SubscriberHub
from .services.webhook_ingestor import WebhookIngestor

logger = logging.getLogger(__name__)


def create_app(
    session_factory=SessionLocal,
    messenger=None,
    roster=None,
    calendar=None,
    webhook_secret=config.ZOOM_WEBHOOK_SECRET_TOKEN,
    run_scheduler: bool = True,
    send_delay: float = config.SEND_DELAY_SECONDS,
    clock=now,
) -> FastAPI:
    app = FastAPI(title="Classroom Relay")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Process-wide collaborators, built once and shared through app.state
    hub = SubscriberHub(keepalive_interval=config.KEEPALIVE_SECONDS)
    live_state = LiveStateMachine(grace_seconds=config.LIVE_GRACE_SECONDS, on_change=hub.notify)
    messenger = messenger or WhatsAppGatewayClient()
    calendar = calendar or TeamupCalendarClient()

    app.state.session_factory = session_factory
    app.state.hub = hub
    app.state.live_state = live_state
    app.state.ingestor = WebhookIngestor(webhook_secret, live_state)
    app.state.roster = roster or WhatsAppRosterClient()
    app.state.calendar = calendar
    app.state.executor = NotificationExecutor(session_factory, messenger, send_delay=send_delay, clock=clock)
    app.state.rebuilder = ReminderRebuilder(
        session_factory, calendar, window_months=config.REBUILD_WINDOW_MONTHS, clock=clock
    )

    @app.on_event("startup")
    async def on_startup():
        setup_logging(config.LOG_LEVEL)
        init_db(bind=session_factory.kw.get("bind"))
        if run_scheduler:
            app.state.scheduler = AsyncIOScheduler()
            app.state.scheduler.add_job(
                app.state.executor.tick,
                "interval",
                seconds=config.EXECUTOR_INTERVAL_SECONDS,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(timezone.utc),
                id="scheduled-messages",
            )
            app.state.scheduler.start()
            logger.info("Scheduled message processor started (every %ss)", config.EXECUTOR_INTERVAL_SECONDS)
        for route in app.routes:
            logger.debug("Route %s %s", getattr(route, "methods", ""), route.path)

    @app.on_event("shutdown")
    async def shutdown():
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            scheduler.shutdown(wait=False)

    app.include_router(zoom.router)
    app.include_router(scheduled_messages.router)
    app.include_router(scheduling.router)

    return app


app = create_app()
