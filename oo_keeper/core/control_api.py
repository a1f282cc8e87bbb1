# /oo_keeper/core/control_api.py
# Operator endpoints: halt / resume the keeper and read the halt state.
from typing import Optional

from fastapi import FastAPI, HTTPException, Header, Depends
from pydantic import BaseModel

from oo_keeper.core.kill import activate_kill_switch, deactivate_kill_switch, kill_switch_reason
from oo_keeper.core.logger import get_logger
from oo_keeper.core.config import settings

app = FastAPI(title="oo-keeper control")
log = get_logger(__name__)


class KillSwitchState(BaseModel):
    kill_switch_active: bool
    reason: Optional[str] = None


class HaltRequest(BaseModel):
    reason: str = "manual override"
    actor: str = "control_api"


def require_operator(authorization: str | None = Header(None)):
    token = settings.CONTROL_API_TOKEN
    if not token:
        raise HTTPException(status_code=500, detail="Control token not configured")
    if authorization != f"Bearer {token}":
        log.warning("CONTROL_API_UNAUTHORIZED")
        raise HTTPException(status_code=401, detail="Unauthorized")


def _state() -> KillSwitchState:
    reason = kill_switch_reason()
    return KillSwitchState(kill_switch_active=reason is not None, reason=reason)


@app.post("/kill", response_model=KillSwitchState)
async def halt(request: HaltRequest, auth: None = Depends(require_operator)):
    activate_kill_switch(request.reason, actor=request.actor)
    log.warning("KEEPER_HALTED_VIA_API", reason=request.reason, actor=request.actor)
    return _state()


@app.delete("/kill", response_model=KillSwitchState)
async def resume(auth: None = Depends(require_operator)):
    deactivate_kill_switch(actor="control_api")
    log.warning("KEEPER_RESUMED_VIA_API")
    return _state()


@app.get("/status", response_model=KillSwitchState)
async def status(auth: None = Depends(require_operator)):
    return _state()
