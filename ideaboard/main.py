import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

# Load env from ideaboard/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from ideaboard.api import admin, comments, health, ideas, metrics, sessions, subscriptions  # noqa: E402
from ideaboard.core.config import Settings, settings as default_settings, validate_config  # noqa: E402
from ideaboard.core.database import create_all_tables, make_engine  # noqa: E402
from ideaboard.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from ideaboard.core.identity import TrustedNetworkPolicy  # noqa: E402
from ideaboard.core.logging import configure_logging  # noqa: E402
from ideaboard.core.middleware.metrics import MetricsMiddleware  # noqa: E402
from ideaboard.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from ideaboard.features.admin.service import AdminService  # noqa: E402
from ideaboard.features.comments.service import CommentService  # noqa: E402
from ideaboard.features.gate.service import (  # noqa: E402
    FeatureFlagStore,
    InMemoryFeatureFlagStore,
    SqlFeatureFlagStore,
)
from ideaboard.features.ideas.service import IdeaService  # noqa: E402
from ideaboard.features.integrations.backup import backup_sink_from_path  # noqa: E402
from ideaboard.features.integrations.dispatcher import SideEffectDispatcher  # noqa: E402
from ideaboard.features.integrations.grader import IdeaGrader  # noqa: E402
from ideaboard.features.integrations.newsletter import NewsletterClient  # noqa: E402
from ideaboard.features.rewards.service import RewardMechanism  # noqa: E402
from ideaboard.features.sessions.service import SessionService  # noqa: E402
from ideaboard.features.store.base import ContentStore  # noqa: E402
from ideaboard.features.store.memory import InMemoryContentStore  # noqa: E402
from ideaboard.features.store.sql import SqlContentStore  # noqa: E402
from ideaboard.features.subscriptions.service import SubscriptionService  # noqa: E402
from ideaboard.features.voting.policy import VotingPolicy  # noqa: E402
from ideaboard.features.voting.service import VoteEngine  # noqa: E402

logger = logging.getLogger("ideaboard")


@dataclass
class ServiceContainer:
    settings: Settings
    store: ContentStore
    flags: FeatureFlagStore
    dispatcher: SideEffectDispatcher
    sessions: SessionService
    ideas: IdeaService
    votes: VoteEngine
    comments: CommentService
    subscriptions: SubscriptionService
    admin: AdminService


def _default_stores(cfg: Settings, time_fn):
    if not cfg.DATABASE_URL:
        logger.info("DATABASE_URL not set; using the in-memory content store")
        return InMemoryContentStore(), InMemoryFeatureFlagStore(cfg.PAYWALL_ENABLED_DEFAULT)
    engine = make_engine(cfg.DATABASE_URL, echo=cfg.SQL_ECHO)
    create_all_tables(engine)
    flag_store = SqlFeatureFlagStore(engine, default_paywall_enabled=cfg.PAYWALL_ENABLED_DEFAULT, time_fn=time_fn)
    return SqlContentStore(engine), flag_store


def build_services(
    cfg: Settings,
    *,
    store: Optional[ContentStore] = None,
    flag_store: Optional[FeatureFlagStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    dispatcher: Optional[SideEffectDispatcher] = None,
    grader: Optional[IdeaGrader] = None,
    newsletter: Optional[NewsletterClient] = None,
) -> ServiceContainer:
    time_fn = clock or (lambda: datetime.now(timezone.utc))
    if store is None or flag_store is None:
        default_store, default_flags = _default_stores(cfg, time_fn)
        store = store or default_store
        flag_store = flag_store or default_flags

    policy = VotingPolicy.from_settings(cfg)
    trusted = TrustedNetworkPolicy.from_settings(cfg)
    dispatcher = dispatcher or SideEffectDispatcher()

    return ServiceContainer(
        settings=cfg,
        store=store,
        flags=flag_store,
        dispatcher=dispatcher,
        sessions=SessionService(store, time_fn=time_fn),
        ideas=IdeaService(
            store,
            flag_store,
            dispatcher=dispatcher,
            grader=grader or IdeaGrader.from_settings(cfg),
            test_submission_ttl_seconds=cfg.TEST_SUBMISSION_TTL_SECONDS,
            time_fn=time_fn,
        ),
        votes=VoteEngine(
            store,
            flag_store,
            policy=policy,
            rewards=RewardMechanism(policy.reward_batch_size),
            trusted=trusted,
            time_fn=time_fn,
        ),
        comments=CommentService(store, policy=policy, trusted=trusted, time_fn=time_fn),
        subscriptions=SubscriptionService(
            store,
            newsletter=newsletter or NewsletterClient.from_settings(cfg),
            backup=backup_sink_from_path(cfg.BACKUP_CSV_PATH),
            time_fn=time_fn,
        ),
        admin=AdminService(store, flag_store, trusted=trusted, time_fn=time_fn),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("ideaboard")
    logger.info("Starting Ideaboard backend...")
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        app.state.services.dispatcher.shutdown()
        logging.getLogger("ideaboard").info("Stopping Ideaboard backend...")


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ContentStore] = None,
    flag_store: Optional[FeatureFlagStore] = None,
    clock: Optional[Callable[[], datetime]] = None,
    dispatcher: Optional[SideEffectDispatcher] = None,
    grader: Optional[IdeaGrader] = None,
    newsletter: Optional[NewsletterClient] = None,
) -> FastAPI:
    cfg = settings or default_settings
    configure_logging(cfg.ENV, cfg.LOG_LEVEL)
    validate_config(strict=cfg.CONFIG_STRICT, settings_obj=cfg)

    app = FastAPI(title=f"{cfg.APP_NAME} - Backend", lifespan=lifespan)
    app.state.settings = cfg
    app.state.trusted = TrustedNetworkPolicy.from_settings(cfg)
    app.state.services = build_services(
        cfg,
        store=store,
        flag_store=flag_store,
        clock=clock,
        dispatcher=dispatcher,
        grader=grader,
        newsletter=newsletter,
    )

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if cfg.trusted_proxies():
        # Outermost, so every layer below sees the rewritten client address.
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=cfg.trusted_proxies())

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(sessions.router)
    app.include_router(ideas.router)
    app.include_router(comments.router)
    app.include_router(subscriptions.router)
    app.include_router(admin.router)
    app.include_router(health.root_router)
    app.include_router(metrics.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("ideaboard.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
