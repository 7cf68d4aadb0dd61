#!/usr/bin/env python3
"""
Axiom Guard Server - HTTP Adapter
=================================

Thin HTTP surface over ConstitutionalEngine for callers that cannot
embed it (desktop shells, generation workers), plus a WebSocket feed of
decisions for a live audit view.

Run:
    axiom-guard-server --config axiom_guard.yaml

API endpoints:
    POST /api/query      - Screen an inbound query
    POST /api/output     - Validate a candidate output
    GET  /api/hash       - Current constitutional hash
    POST /api/axioms     - Register or replace an axiom (administrative)
    GET  /api/status     - Engine status and metrics
    GET  /api/decisions  - Recent local decisions
    POST /api/decision   - Ingest a decision forwarded by a remote bridge
    WS   /ws             - Live decision feed
"""

import argparse
import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Set

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .config import load_config
from .engine import ConstitutionalEngine, Decision
from .errors import PolicyConfigurationError, ValidationError, ViolationKind
from .log import setup_logging
from .models import Output, Query

logger = logging.getLogger(__name__)


# =============================================================================
# WEBSOCKET MANAGER
# =============================================================================

class ConnectionManager:
    """Manages WebSocket connections and pending decision broadcasts."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self.pending: Deque[Dict[str, Any]] = deque()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    def queue_decision(self, decision: Decision):
        """Engine callback. Runs synchronously inside the request."""
        self.pending.append({"type": "decision", "source": "local", "decision": decision.to_dict()})

    async def flush(self):
        while self.pending:
            await self.broadcast(self.pending.popleft())

    async def broadcast(self, message: Dict[str, Any]):
        """Send message to all connected clients."""
        disconnected = set()
        for connection in self.active_connections:
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.add(connection)

        # Clean up disconnected
        self.active_connections -= disconnected


# =============================================================================
# RESPONSES
# =============================================================================

def _rejection(error: ValidationError) -> JSONResponse:
    status = 409 if error.kind is ViolationKind.NO_POLICY_LOADED else 422
    return JSONResponse(status_code=status, content=error.to_dict())


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "BadRequest", "message": message})


def _parse_query(raw: Any) -> Optional[Query]:
    if not isinstance(raw, dict) or not isinstance(raw.get("content"), str):
        return None
    kwargs: Dict[str, Any] = {"content": raw["content"]}
    if raw.get("timestamp") is not None:
        try:
            kwargs["timestamp"] = int(raw["timestamp"])
        except (TypeError, ValueError):
            return None
    if raw.get("user_id"):
        kwargs["user_id"] = str(raw["user_id"])
    return Query(**kwargs)


# =============================================================================
# FASTAPI APP
# =============================================================================

def create_app(engine: Optional[ConstitutionalEngine] = None, max_remote_history: int = 500) -> FastAPI:
    """Build the app around an engine (a default engine if None)."""
    engine = engine if engine is not None else ConstitutionalEngine()
    manager = ConnectionManager()
    remote_decisions: Deque[Dict[str, Any]] = deque(maxlen=max_remote_history)
    engine.on_decision(manager.queue_decision)

    app = FastAPI(title="Axiom Guard")
    app.state.engine = engine
    app.state.manager = manager

    @app.post("/api/query")
    async def post_query(body: Dict[str, Any]):
        content = body.get("content")
        if not isinstance(content, str):
            return _bad_request("'content' must be a string")
        try:
            prompt = engine.validate_query(content, user_id=str(body.get("user_id") or "user"))
        except ValidationError as e:
            return _rejection(e)
        finally:
            await manager.flush()
        return {
            "content": prompt.content,
            "activation_mask_active": prompt.active_count,
            "timestamp": prompt.timestamp,
        }

    @app.post("/api/output")
    async def post_output(body: Dict[str, Any]):
        query = _parse_query(body.get("query"))
        content = body.get("content")
        if query is None or not isinstance(content, str):
            return _bad_request("expected {'query': {'content': ..., 'timestamp'?: int}, 'content': ...}")
        candidate = Output(content=content)
        try:
            engine.validate_output(query, candidate)
        except ValidationError as e:
            return _rejection(e)
        finally:
            await manager.flush()
        return {
            "content": candidate.content,
            "validation_mask_active": candidate.active_count,
        }

    @app.get("/api/hash")
    async def get_hash():
        try:
            return {"hash": engine.get_constitutional_hash()}
        except ValidationError as e:
            return _rejection(e)

    @app.post("/api/axioms")
    async def post_axiom(body: Dict[str, Any]):
        try:
            axiom = engine.add_axiom(
                body.get("kind", ""),
                str(body.get("id", "")),
                body.get("predicate"),
                category=str(body.get("category") or "general"),
                description=str(body.get("description") or ""),
            )
        except PolicyConfigurationError as e:
            return _bad_request(str(e))
        return {"status": "ok", "axiom": axiom.to_dict(), "hash": engine.get_constitutional_hash()}

    @app.get("/api/status")
    async def get_status():
        return engine.status()

    @app.get("/api/decisions")
    async def get_decisions(limit: int = 100):
        return {"decisions": engine.recent_decisions(limit)}

    @app.post("/api/decision")
    async def post_decision(decision: Dict[str, Any]):
        """Receive a decision forwarded by an AuditBridge."""
        remote_decisions.append(decision)
        await manager.broadcast({"type": "decision", "source": "remote", "decision": decision})
        return {"status": "ok", "received": len(remote_decisions)}

    @app.get("/api/remote-decisions")
    async def get_remote_decisions(limit: int = 100):
        items: List[Dict[str, Any]] = list(remote_decisions)
        return {"decisions": items[-limit:]}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for real-time updates."""
        await manager.connect(websocket)

        # Send initial state
        await websocket.send_json({
            "type": "init",
            "status": engine.status(),
            "decisions": engine.recent_decisions(50),
        })

        try:
            while True:
                data = await websocket.receive_json()
                if data.get("type") == "get_status":
                    await websocket.send_json({"type": "status", "status": engine.status()})
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Axiom Guard validation server")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--policy", type=Path, default=None, help="YAML policy document")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)
    config = load_config(args.config)
    if args.policy is not None:
        config["policy_path"] = str(args.policy)

    engine = ConstitutionalEngine(config=config)
    host = args.host or config["server"]["host"]
    port = args.port or config["server"]["port"]

    logger.info("Starting server on http://%s:%d (policy %s)", host, port, engine.ledger.root_hex())
    uvicorn.run(create_app(engine), host=host, port=port)


if __name__ == "__main__":
    main()
