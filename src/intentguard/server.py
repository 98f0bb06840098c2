"""
HTTP transport over the authorization engine.

Routes are a thin translation layer: policy denials and approval errors
come back as 200 bodies carrying the engine's result; only malformed
requests and unknown intents map to 4xx.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .engine import AuthorizationEngine


class ProposeBody(BaseModel):
    principal_id: Optional[str] = None
    source_id: Optional[str] = None
    amount: Any = None
    amount_sats: Any = None
    recipient_id: Any = None
    note: Any = None


class ApproveBody(BaseModel):
    principal_id: Optional[str] = None
    intent_id: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


def create_app(engine: AuthorizationEngine, default_source_id: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="intentguard", version=__version__)

    @app.get("/health")
    def health():
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/intents")
    def propose(body: ProposeBody):
        source_id = body.source_id or default_source_id
        if not body.principal_id or not source_id:
            return _bad_request("principal_id and source_id are required")
        request = body.model_dump(exclude={"principal_id", "source_id"}, exclude_none=True)
        result = engine.propose_request(body.principal_id, source_id, request)
        return result.to_dict()

    @app.post("/approve")
    def approve(body: ApproveBody):
        if not body.principal_id or not body.intent_id:
            return _bad_request("principal_id and intent_id are required")
        result = engine.confirm(body.principal_id, body.intent_id)
        return result.to_dict()

    @app.get("/intents/pending/{principal_id}")
    def pending_intents(principal_id: str):
        return {"intents": [i.to_dict() for i in engine.list_pending(principal_id)]}

    @app.get("/intents/{principal_id}")
    def all_intents(principal_id: str):
        return {"intents": [i.to_dict() for i in engine.list_intents(principal_id)]}

    @app.get("/intent/{intent_id}")
    def get_intent(intent_id: str):
        intent = engine.get_intent(intent_id)
        if intent is None:
            return JSONResponse(status_code=404, content={"error": "Intent not found"})
        return {"intent": intent.to_dict()}

    @app.get("/policy")
    def policy():
        return {"policy": engine.get_policy_snapshot().to_dict()}

    @app.get("/daily-spend/{principal_id}")
    def daily_spend(principal_id: str):
        return {"principal_id": principal_id, "daily_spend": engine.get_daily_spend(principal_id)}

    return app
