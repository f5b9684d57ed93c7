# app.py
"""
Slot Registry – HTTP Service Entry Point

Responsibilities:
- FastAPI HTTP server over one in-memory deployment
  (token, price oracle, registry, machines)
- Request Validation (Pydantic)
- Custodial player accounts (demo balances)
- Serialized chain access (single asyncio.Lock)
- Audit trail of every successful transaction (db.py)

Integration:
- Uses chain.py / registry.py / machine.py (atomic transactions)
- Uses db.py (async SQLAlchemy audit store)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    status,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from slotchain.chain import (
    AuthorizationError,
    Chain,
    ChainError,
    InsufficientFundsError,
    ReentrancyError,
    ValidationError,
)
from slotchain.db import get_session, init_db, list_events, list_spins, record_events
from slotchain.engine import SpinResult
from slotchain.machine import SlotMachine
from slotchain.oracle import StaticPriceOracle
from slotchain.registry import SlotRegistry
from slotchain.token import StableToken
from slotchain.utils import format_multiplier, format_units, parse_units

# =====================================================
# LOGGING & CONFIG
# =====================================================

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("slotchain_app")

STARTING_BALANCE = Decimal(os.getenv("STARTING_BALANCE", "1000"))
MACHINE_BANKROLL = Decimal(os.getenv("MACHINE_BANKROLL", "100000"))

ORACLE_FEED_ID = os.getenv("ORACLE_FEED_ID", "0x" + "12345678" * 8)
ORACLE_PRICE = int(os.getenv("ORACLE_PRICE", str(45_000 * 10 ** 8)))
ORACLE_CONFIDENCE = int(os.getenv("ORACLE_CONFIDENCE", "100"))
ORACLE_EXPONENT = int(os.getenv("ORACLE_EXPONENT", "-8"))

GENESIS_TIME = os.getenv("GENESIS_TIME")

# =====================================================
# DEPLOYMENT
# =====================================================

class Deployment:
    """
    One chain with its token, oracle and registry.
    The operator owns all three and signs for custodial players.
    """

    def __init__(self, genesis_time: Optional[int] = None) -> None:
        self.chain = Chain(genesis_time=genesis_time)
        self.operator = self.chain.create_account("operator")
        self.house_wallet = self.chain.create_account("house")

        self.token = StableToken(self.chain, owner=self.operator)
        self.oracle = StaticPriceOracle(self.chain, owner=self.operator)
        self.registry = SlotRegistry(
            self.chain,
            owner=self.operator,
            ledger_asset=self.token.address,
            house_wallet=self.house_wallet,
        )
        self.chain.transact(
            self.operator,
            self.oracle.set_price,
            ORACLE_FEED_ID,
            ORACLE_PRICE,
            ORACLE_CONFIDENCE,
            ORACLE_EXPONENT,
        )

        self.players: Dict[str, str] = {}
        self.lock = asyncio.Lock()

    def player_address(self, player_id: str) -> str:
        address = self.players.get(player_id)
        if address is None:
            raise HTTPException(status_code=404, detail="Player not found")
        return address

    def machine(self, address: str) -> SlotMachine:
        if not self.registry.is_registered(address):
            raise HTTPException(status_code=404, detail="Machine not found")
        return self.chain.contract_at(address)

    def balance(self, address: str) -> str:
        return format_units(self.token.balance_of(address))


deployment = Deployment(genesis_time=int(GENESIS_TIME) if GENESIS_TIME else None)

# =====================================================
# TRANSACTION BUNDLES
# =====================================================
# Each runs as the body of one `transact`, so the steps commit or revert together.

def _approve_and_spin(token: StableToken, machine: SlotMachine, amount: int) -> SpinResult:
    chain = machine.chain
    player = chain.msg_sender
    chain.call(player, token.approve, machine.address, amount)
    return chain.call(player, machine.spin, amount)


def _mint_and_fund(token: StableToken, registry: SlotRegistry, amount: int) -> None:
    chain = registry.chain
    operator = chain.msg_sender
    chain.call(operator, token.mint, operator, amount)
    chain.call(operator, token.approve, registry.address, amount)
    chain.call(operator, registry.fund_jackpot, amount)


def _create_and_bankroll(
    token: StableToken,
    registry: SlotRegistry,
    oracle: str,
    owner: str,
    bankroll: int,
) -> str:
    chain = registry.chain
    operator = chain.msg_sender
    address = chain.call(operator, registry.create_machine, oracle, ORACLE_FEED_ID, owner)
    if bankroll > 0:
        chain.call(operator, token.mint, address, bankroll)
    return address


def _to_units(amount: Decimal) -> int:
    try:
        return parse_units(amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

# =====================================================
# DATA MODELS (Pydantic)
# =====================================================

class PlayerInitRequest(BaseModel):
    player_id: str = Field(..., min_length=1)

class CreateMachineRequest(BaseModel):
    owner_id: Optional[str] = None  # defaults to the operator

class SpinRequest(BaseModel):
    player_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)  # whole tokens, converted to smallest units

class FundJackpotRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)

class RegistryConfigRequest(BaseModel):
    jackpot_share: int = Field(..., ge=0)
    house_edge: int = Field(..., ge=0)
    spins_per_refresh: int = Field(..., gt=0)

# =====================================================
# LIFECYCLE
# =====================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages startup and shutdown events.
    """
    logger.info("Startup: Initializing Database...")
    await init_db()
    logger.info(f"Startup: Registry {deployment.registry.address}, token {deployment.token.address}")

    yield

    logger.info("Shutdown: Cleaning up...")

# =====================================================
# APP INIT
# =====================================================

app = FastAPI(
    title="Slot Registry API",
    version="1.0.0",
    lifespan=lifespan,
)

# =====================================================
# ERROR HANDLERS
# =====================================================

def _revert(status_code: int, error: str, exc: ChainError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": exc.reason},
    )

@app.exception_handler(AuthorizationError)
async def authorization_error_handler(_, exc: AuthorizationError):
    return _revert(status.HTTP_403_FORBIDDEN, "Unauthorized", exc)

@app.exception_handler(ValidationError)
async def validation_error_handler(_, exc: ValidationError):
    return _revert(status.HTTP_400_BAD_REQUEST, "Invalid Request", exc)

@app.exception_handler(InsufficientFundsError)
async def insufficient_funds_handler(_, exc: InsufficientFundsError):
    return _revert(status.HTTP_402_PAYMENT_REQUIRED, "Insufficient Funds", exc)

@app.exception_handler(ReentrancyError)
async def reentrancy_error_handler(_, exc: ReentrancyError):
    return _revert(status.HTTP_409_CONFLICT, "Reentrant Call", exc)

@app.exception_handler(ChainError)
async def chain_error_handler(_, exc: ChainError):
    return _revert(status.HTTP_409_CONFLICT, "Transaction Reverted", exc)

# =====================================================
# API – HEALTH
# =====================================================

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "block": deployment.chain.block.number,
        "registry": deployment.registry.address,
    }

# =====================================================
# API – PLAYERS
# =====================================================

@app.post("/api/players/init")
async def api_player_init(
    payload: PlayerInitRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Creates a custodial account funded with the demo balance,
    or returns the existing one.
    """
    async with deployment.lock:
        address = deployment.players.get(payload.player_id)
        events = []
        if address is None:
            chain = deployment.chain
            mark = len(chain.events)
            address = chain.create_account(payload.player_id)
            chain.transact(deployment.operator, deployment.token.mint, address, parse_units(STARTING_BALANCE))
            deployment.players[payload.player_id] = address
            events = chain.events_since(mark)
            logger.info(f"New player {payload.player_id} -> {address}")

    if events:
        await record_events(session, events)
    return {
        "player_id": payload.player_id,
        "address": address,
        "balance": deployment.balance(address),
    }

@app.get("/api/players/{player_id}")
async def api_player(player_id: str):
    address = deployment.player_address(player_id)
    return {
        "player_id": player_id,
        "address": address,
        "balance": deployment.balance(address),
    }

# =====================================================
# API – MACHINES
# =====================================================

@app.get("/api/machines")
async def api_machines() -> List[str]:
    return deployment.registry.all_machines()

@app.post("/api/machines")
async def api_create_machine(
    payload: CreateMachineRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Deploys a machine on the shared oracle feed and seeds its bankroll
    so table wins can be paid out.
    """
    async with deployment.lock:
        chain = deployment.chain
        owner = deployment.player_address(payload.owner_id) if payload.owner_id else deployment.operator
        mark = len(chain.events)
        address = chain.transact(
            deployment.operator,
            _create_and_bankroll,
            deployment.token,
            deployment.registry,
            deployment.oracle.address,
            owner,
            parse_units(MACHINE_BANKROLL),
        )
        events = chain.events_since(mark)

    await record_events(session, events)
    return {"address": address, "owner": owner, "bankroll": deployment.balance(address)}

@app.get("/api/machines/{address}")
async def api_machine(address: str):
    machine = deployment.machine(address)
    return {
        "address": machine.address,
        "owner": machine.owner,
        "state": machine.state.value,
        "jackpot_share": machine.jackpot_share,
        "house_edge": machine.house_edge,
        "randomness_refresh_interval": machine.randomness_refresh_interval,
        "stats": machine.get_stats().to_dict(),
        "valid_bet_amounts": [format_units(a) for a in machine.get_valid_bet_amounts()],
        "payout_table": {k: format_multiplier(v) for k, v in machine.payout_table.to_dict().items()},
        "symbols": machine.symbols(),
        "oracle_price": machine.oracle_price().to_dict(),
        "balance": deployment.balance(machine.address),
    }

@app.post("/api/machines/{address}/spin")
async def api_spin(
    address: str,
    payload: SpinRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Approves exactly the bet for the machine, then spins, as one
    transaction: a failed spin leaves no allowance behind.
    """
    amount = _to_units(payload.amount)

    async with deployment.lock:
        chain = deployment.chain
        player = deployment.player_address(payload.player_id)
        machine = deployment.machine(address)
        mark = len(chain.events)
        result = chain.transact(player, _approve_and_spin, deployment.token, machine, amount)
        events = chain.events_since(mark)

    await record_events(session, events)
    return {
        **result.to_dict(),
        "payout_display": format_units(result.payout),
        "balance": deployment.balance(player),
        "jackpot_pool": format_units(deployment.registry.jackpot_pool),
    }

@app.post("/api/machines/{address}/refresh")
async def api_refresh(
    address: str,
    session: AsyncSession = Depends(get_session),
):
    async with deployment.lock:
        chain = deployment.chain
        machine = deployment.machine(address)
        mark = len(chain.events)
        chain.transact(deployment.operator, machine.refresh_randomness)
        events = chain.events_since(mark)

    await record_events(session, events)
    return machine.get_stats().to_dict()

@app.get("/api/machines/{address}/history/{player_id}")
async def api_machine_history(address: str, player_id: str):
    machine = deployment.machine(address)
    player = deployment.player_address(player_id)
    return {
        "player_id": player_id,
        "total_winnings": format_units(machine.total_winnings(player)),
        "spins": [r.to_dict() for r in machine.spin_history(player)],
    }

@app.get("/api/spins/{player_id}")
async def api_spins(
    player_id: str,
    limit: int = 50,
    session: AsyncSession = Depends(get_session),
):
    """Audit trail view, newest first."""
    player = deployment.player_address(player_id)
    records = await list_spins(session, player, limit=limit)
    return [
        {
            "machine": r.machine,
            "reels": [int(x) for x in r.reels.split(",")],
            "bet_amount": format_units(r.bet_amount),
            "payout": format_units(r.payout),
            "won_jackpot": r.won_jackpot,
            "block_number": r.block_number,
        }
        for r in records
    ]

@app.get("/api/events")
async def api_events(
    name: Optional[str] = None,
    limit: int = 100,
    session: AsyncSession = Depends(get_session),
):
    records = await list_events(session, name=name, limit=limit)
    return [
        {
            "name": e.name,
            "contract": e.contract,
            "block_number": e.block_number,
            "tx_index": e.tx_index,
            "payload": json.loads(e.payload),
        }
        for e in records
    ]

# =====================================================
# API – REGISTRY
# =====================================================

@app.get("/api/registry")
async def api_registry():
    registry = deployment.registry
    stats = registry.get_stats()
    return {
        "address": registry.address,
        "house_wallet": registry.house_wallet,
        "total_volume": format_units(stats.total_volume),
        "total_spins": stats.total_spins,
        "total_jackpot_wins": stats.total_jackpot_wins,
        "jackpot_pool": format_units(stats.jackpot_pool),
        "machine_count": stats.machine_count,
        "max_jackpot_share": registry.max_jackpot_share,
        "max_house_edge": registry.max_house_edge,
        "default_jackpot_share": registry.default_jackpot_share,
        "default_house_edge": registry.default_house_edge,
        "spins_per_randomness_refresh": registry.spins_per_randomness_refresh,
    }

@app.post("/api/registry/jackpot")
async def api_fund_jackpot(
    payload: FundJackpotRequest,
    session: AsyncSession = Depends(get_session),
):
    """Operator mints, approves and tops up the shared pool."""
    amount = _to_units(payload.amount)

    async with deployment.lock:
        chain = deployment.chain
        mark = len(chain.events)
        chain.transact(deployment.operator, _mint_and_fund, deployment.token, deployment.registry, amount)
        events = chain.events_since(mark)

    await record_events(session, events)
    return {"jackpot_pool": format_units(deployment.registry.jackpot_pool)}

@app.put("/api/registry/config")
async def api_registry_config(
    payload: RegistryConfigRequest,
    session: AsyncSession = Depends(get_session),
):
    async with deployment.lock:
        chain = deployment.chain
        mark = len(chain.events)
        chain.transact(
            deployment.operator,
            deployment.registry.update_configuration,
            payload.jackpot_share,
            payload.house_edge,
            payload.spins_per_refresh,
        )
        events = chain.events_since(mark)

    await record_events(session, events)
    return {
        "default_jackpot_share": deployment.registry.default_jackpot_share,
        "default_house_edge": deployment.registry.default_house_edge,
        "spins_per_randomness_refresh": deployment.registry.spins_per_randomness_refresh,
    }

# =====================================================
# ENTRY POINT
# =====================================================

def main() -> None:
    import uvicorn

    uvicorn.run(
        "slotchain.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
