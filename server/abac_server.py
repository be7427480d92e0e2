"""
abac_server.py - ABAC Policy Decision Server v1.0

Features:
- Policy registration/removal over HTTP (copy-on-write store)
- Fail-closed decisions: evaluation errors are returned as a generic deny
- Optional policy set loaded at startup from ABAC_POLICY_PATH
- Decision records delivered to a structured-log audit sink in the background
"""

import hmac
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException

from abac_policy import (
    DecisionEngine, DecisionRequest, EngineConfig, LogAuditSink, PolicyStore,
    QueueAuditSink, ValidationError, evaluate_fail_closed, load_into_store
)
from abac_policy.compiler import policy_to_dict
from abac_policy.log import log_decision, log_structured
from abac_policy.store import DUPLICATE_POLICY

# ============== UTILITIES ==============

def generate_id(prefix: str = "id") -> str:
    """Generate a unique ID with prefix."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


# ============== CONFIGURATION ==============

CONFIG = EngineConfig.from_env()

# Optional bearer-token auth for write and evaluate endpoints.
# When ABAC_AUTH_TOKEN is empty (default) auth is disabled.
# GET /v1/health and GET /v1/policies are always unprotected.
ABAC_AUTH_TOKEN: str = CONFIG.auth_token
if ABAC_AUTH_TOKEN:
    log_structured("info", "ABAC_AUTH_TOKEN set: bearer-token auth enabled")


def require_auth(authorization: Optional[str] = Header(None)) -> None:
    """FastAPI dependency - enforces bearer token when ABAC_AUTH_TOKEN is set."""
    if not ABAC_AUTH_TOKEN:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    token = authorization[len("Bearer "):]
    if not hmac.compare_digest(token.encode(), ABAC_AUTH_TOKEN.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ============== STATE ==============

STORE = PolicyStore()

if CONFIG.policy_path is not None:
    try:
        snapshot = load_into_store(STORE, CONFIG.policy_path)
        log_structured(
            "info", "Policy set loaded",
            path=str(CONFIG.policy_path),
            policy_count=len(snapshot),
        )
    except (OSError, ValueError, ValidationError) as e:
        # Start with an empty store: every request is denied until policies arrive
        log_structured("error", "Failed to load policy set", path=str(CONFIG.policy_path), error=str(e))

AUDIT_SINK = (
    QueueAuditSink(LogAuditSink(), maxsize=CONFIG.audit_queue_size)
    if CONFIG.audit_queue_size > 0
    else LogAuditSink()
)

ENGINE = DecisionEngine.from_config(STORE, CONFIG, audit_sink=AUDIT_SINK)


class EvaluateRequest(DecisionRequest):
    """Decision request plus an optional caller-supplied correlation id."""
    request_id: Optional[str] = None


# ============== APP ==============

app = FastAPI(title="ABAC Policy Decision Server", version="1.0.0")


@app.get("/v1/health")
def health():
    """Health check."""
    snapshot = STORE.snapshot()
    return {
        "status": "healthy",
        "policies": len(snapshot),
        "snapshot_version": snapshot.version,
        "on_evaluation_error": ENGINE.on_evaluation_error.value,
    }


@app.get("/v1/policies")
def list_policies():
    """Current policies in evaluation order."""
    snapshot = STORE.snapshot()
    return {
        "snapshot_version": snapshot.version,
        "policies": [policy_to_dict(p) for p in snapshot],
    }


@app.post("/v1/policies", status_code=201)
def register_policy(payload: Dict[str, Any], _auth: None = Depends(require_auth)):
    """Register one policy."""
    try:
        policy = STORE.register(payload)
    except ValidationError as e:
        status_code = 409 if e.error_code == DUPLICATE_POLICY else 422
        raise HTTPException(status_code=status_code, detail=e.to_dict())

    return {
        "policy_id": policy.id,
        "snapshot_version": STORE.snapshot().version,
    }


@app.delete("/v1/policies/{policy_id}")
def remove_policy(policy_id: str, _auth: None = Depends(require_auth)):
    """Remove one policy."""
    if not STORE.remove(policy_id):
        raise HTTPException(status_code=404, detail="Policy not found")
    return {
        "policy_id": policy_id,
        "snapshot_version": STORE.snapshot().version,
    }


@app.post("/v1/evaluate")
def evaluate_request(req: EvaluateRequest, _auth: None = Depends(require_auth)):
    """Decide a request. Never returns permit on an evaluation error."""
    request_id = req.request_id or generate_id("req")
    decision = evaluate_fail_closed(ENGINE, req, request_id=request_id)

    log_decision(
        "info", "Decision returned",
        request_id=request_id,
        policy_id=decision.matched_policy_id,
        event_type="DECISION_RETURNED",
        effect=decision.effect.value,
        permitted=decision.permitted,
    )

    return {
        "request_id": request_id,
        **decision.model_dump(mode="json"),
    }


# ============== MAIN ==============

if __name__ == "__main__":
    import uvicorn
    port = CONFIG.port
    print("=" * 60)
    print("ABAC Policy Decision Server v1.0")
    print(f"Policies: {len(STORE)}")
    print(f"On evaluation error: {ENGINE.on_evaluation_error.value}")
    print(f"Port: {port}")
    print("=" * 60)
    uvicorn.run(app, host="0.0.0.0", port=port)
