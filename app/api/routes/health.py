from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Reports liveness plus the size of the policy set the gate enforces, so a
    deployment with a missing or empty policy file is visible at a glance.
    Matched by policies like any other route.

    Returns:
        dict: ``status`` ("ok") and ``policies`` (number of loaded policies).
    """

    enforcer = request.app.state.enforcer
    return {"status": "ok", "policies": len(enforcer.matcher.policies)}
