"""Application factory for the quota gate.

Centralizes app construction (logging, policy loading, middleware, handlers,
routers) so tests can build isolated apps with their own settings and policy
files.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.api.routes import health_router
from app.core.config import GateSettings, Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.quota_gate import QuotaGateMiddleware
from app.schemas.policy import PolicyFile
from app.services.enforcer import Enforcer, create_enforcer, describe_policy
from app.services.policy_loader import load_policy_file

logger = logging.getLogger(__name__)

# Position of the request id middleware in the chain; the gate's filterOrder
# is compared against it.
REQUEST_ID_ORDER = 0


def resolve_filter_order(gate_settings: GateSettings, policy_file: PolicyFile) -> int:
    """``GATE_FILTER_ORDER`` wins over the policy file's ``filterOrder``."""

    if gate_settings.filter_order is not None:
        return gate_settings.filter_order
    return policy_file.filter_order


def install_middlewares(app: FastAPI, ordered: list[tuple[int, Callable[[FastAPI], None]]]) -> None:
    """Install middlewares so that lower orders run earlier (further out).

    Starlette wraps the stack in reverse registration order, so installers
    are applied from the highest order down. On equal orders the entry listed
    first runs first.
    """
    by_position = sorted(enumerate(ordered), key=lambda item: (item[1][0], item[0]), reverse=True)
    for _, (_, install) in by_position:
        install(app)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Close quota store connections on shutdown."""
    yield
    app.state.enforcer.engine.store.close()


def create_app(
    app_settings: Settings | None = None,
    *,
    policy_file: PolicyFile | None = None,
    enforcer: Enforcer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to use; defaults to the global settings.
        policy_file: Pre-validated policies; loaded from ``GATE_POLICIES_FILE``
            when omitted.
        enforcer: Pre-built enforcer (tests inject stores/clocks this way).

    Returns:
        Configured FastAPI app.

    Raises:
        ConfigurationAppError: If the policy file or gate settings are invalid.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    if policy_file is None:
        policy_file = load_policy_file(cfg.gate.policies_file)
    if enforcer is None:
        enforcer = create_enforcer(cfg.gate, policy_file)

    app = FastAPI(
        title="Quota Gate",
        description=(
            "Admission control in front of downstream handlers: per-route quota "
            "policies, deterministic request keys and fixed-window counters with "
            "optional cool-down."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.enforcer = enforcer

    middlewares: list[tuple[int, Callable[[FastAPI], None]]] = [
        (REQUEST_ID_ORDER, lambda a: a.middleware("http")(request_id_middleware)),
    ]
    if cfg.gate.enabled:
        middlewares.append(
            (
                resolve_filter_order(cfg.gate, policy_file),
                lambda a: a.add_middleware(
                    QuotaGateMiddleware,
                    enforcer=enforcer,
                    include_headers=cfg.gate.include_headers,
                ),
            )
        )
    install_middlewares(app, middlewares)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)

    logger.info(
        "quota_gate.configured",
        extra={
            "enabled": cfg.gate.enabled,
            "store_backend": cfg.gate.store_backend,
            "fail_open": cfg.gate.fail_open,
            "filter_order": resolve_filter_order(cfg.gate, policy_file),
            "policies": [describe_policy(p) for p in policy_file.policies],
        },
    )

    return app
