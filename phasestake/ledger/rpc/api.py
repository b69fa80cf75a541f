from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Optional
from ...protocol.types.common import (
    ArithmeticOverflow,
    InvalidAmount,
    InvalidSchedule,
    InvariantViolation,
    LedgerError,
    NothingToWithdraw,
    TransferFailed,
    UnknownParticipant,
)
from ..core.blocks import ManualBlockSource
from ..core.ledger import Ledger
from ..core.transfer import TokenVault, TransferError
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="PhaseStake Ledger RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
ledger: Optional[Ledger] = None
# Devnet only: in-process vault and manually advanced block source
vault: Optional[TokenVault] = None
blocks: Optional[ManualBlockSource] = None

# Ledger error -> HTTP status
ERROR_STATUS = {
    InvalidAmount: 400,
    UnknownParticipant: 404,
    NothingToWithdraw: 409,
    ArithmeticOverflow: 422,
    InvalidSchedule: 422,
    TransferFailed: 502,
    InvariantViolation: 500,
}


class AmountRequest(BaseModel):
    address: str
    amount: int


class WithdrawRequest(BaseModel):
    address: str
    # Full withdrawal when omitted
    amount: Optional[int] = None


class AdvanceRequest(BaseModel):
    blocks: int = 1


def _require_ledger() -> Ledger:
    if not ledger:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return ledger


def _ledger_error(e: LedgerError) -> HTTPException:
    status = ERROR_STATUS.get(type(e), 400)
    return HTTPException(status_code=status, detail={"error": e.code, "message": str(e)})


@app.get("/")
async def root():
    return {"message": "PhaseStake Ledger RPC", "version": "1.0"}

@app.get("/status")
async def get_status():
    node = _require_ledger()
    status = node.status()
    for key in ("total_staked", "reward_pot_remaining"):
        status[key] = str(status[key])
    status["current_phase"]["rate"] = str(status["current_phase"]["rate"])
    return status

@app.get("/phases")
async def get_phases():
    node = _require_ledger()
    return {
        "epoch_start_block": node.epoch_start_block,
        "horizon": node.schedule.horizon,
        "phases": [
            {"rate": str(p.rate), "cumulative_block_limit": p.cumulative_block_limit}
            for p in node.schedule.phases
        ],
        "current_phase": node.current_phase()["index"],
    }

@app.get("/balance/{address}")
async def get_balance(address: str):
    """Balance as of the last settlement (no settlement is run)."""
    node = _require_ledger()
    try:
        balance = node.get_balance(address)
    except LedgerError as e:
        raise _ledger_error(e)
    return {
        "address": address,
        "balance": str(balance),
        "last_settled_block": node.last_settled_block,
    }

@app.post("/balance/{address}/settle")
async def get_settled_balance(address: str):
    """Settles the ledger up to the current block, then returns the balance."""
    node = _require_ledger()
    try:
        balance = node.get_settled_balance(address)
    except LedgerError as e:
        raise _ledger_error(e)
    return {
        "address": address,
        "balance": str(balance),
        "last_settled_block": node.last_settled_block,
    }

@app.get("/participants")
async def get_participants():
    node = _require_ledger()
    participants = node.participants()
    return {"count": len(participants), "participants": participants}

@app.get("/journal")
async def get_journal(limit: int = Query(50, ge=1, le=1000), address: Optional[str] = None):
    node = _require_ledger()
    return {"entries": node.journal(limit, address)}

@app.post("/deposit")
async def deposit(req: AmountRequest):
    node = _require_ledger()
    try:
        receipt = node.deposit(req.address, req.amount)
    except LedgerError as e:
        raise _ledger_error(e)
    return receipt.to_dict()

@app.post("/withdraw")
async def withdraw(req: WithdrawRequest):
    node = _require_ledger()
    try:
        if req.amount is None:
            receipt = node.withdraw(req.address)
        else:
            receipt = node.withdraw_partial(req.address, req.amount)
    except LedgerError as e:
        raise _ledger_error(e)
    return receipt.to_dict()

@app.post("/settle")
async def settle():
    node = _require_ledger()
    try:
        report = node.request_settlement()
    except LedgerError as e:
        raise _ledger_error(e)
    return report.to_dict()

@app.post("/fund")
async def fund(req: AmountRequest):
    node = _require_ledger()
    try:
        receipt = node.fund_reward_pot(req.address, req.amount)
    except LedgerError as e:
        raise _ledger_error(e)
    return receipt.to_dict()

# ═══════════════════════════════════════════════════════════════════
# DEVNET ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.post("/blocks/advance")
async def advance_blocks(req: AdvanceRequest):
    node = _require_ledger()
    if not blocks or not node.config.manual_blocks_enabled:
        raise HTTPException(status_code=403, detail="Manual block advance not enabled on this node")
    try:
        height = blocks.advance(req.blocks)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"height": height}

@app.post("/faucet")
async def faucet(req: AmountRequest):
    node = _require_ledger()
    if not vault or not node.config.faucet_enabled:
        raise HTTPException(status_code=403, detail="Faucet not enabled on this node")
    try:
        vault.mint(req.address, req.amount)
    except TransferError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"address": req.address, "balance": str(vault.balance_of(req.address))}

@app.get("/vault/{address}")
async def get_vault_balance(address: str):
    _require_ledger()
    if not vault:
        raise HTTPException(status_code=404, detail="No in-process vault on this node")
    return {"address": address, "balance": str(vault.balance_of(address))}

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    node = _require_ledger()
    try:
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        from ..observability.metrics import metrics_registry, update_metrics

        update_metrics(node)

        metrics_data = generate_latest(metrics_registry)

        return Response(
            content=metrics_data,
            media_type=CONTENT_TYPE_LATEST
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Metrics error: {str(e)}")

# ═══════════════════════════════════════════════════════════════════
# SNAPSHOT ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get("/snapshots")
async def list_snapshots():
    """
    List all available snapshots.

    Returns:
        List of snapshot metadata (height, size, participants, totals, etc.)
    """
    node = _require_ledger()

    if not node.snapshot_manager:
        raise HTTPException(status_code=503, detail="Snapshots not enabled on this node")

    try:
        snapshots = node.snapshot_manager.list_snapshots()
        return [snap.model_dump(mode="json") for snap in snapshots]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Snapshot error: {str(e)}")

@app.post("/snapshots")
async def create_snapshot():
    node = _require_ledger()

    if not node.snapshot_manager:
        raise HTTPException(status_code=503, detail="Snapshots not enabled on this node")

    try:
        metadata = node.create_snapshot()
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Snapshot error: {str(e)}")
    return metadata.model_dump(mode="json")

def start_rpc_server(ledger_instance: Ledger, vault_instance: Optional[TokenVault] = None,
                     blocks_instance: Optional[ManualBlockSource] = None,
                     host: str = "0.0.0.0", port: int = 8000):
    global ledger, vault, blocks
    ledger = ledger_instance
    vault = vault_instance
    blocks = blocks_instance
    import uvicorn
    uvicorn.run(app, host=host, port=port)
