# chain.py
"""
Execution Substrate

Responsibilities:
- Accounts, contract registry & native balances
- Blocks (number, timestamp, prevrandao) mined per transaction
- Call frames: msg_sender / tx_origin for contract-to-contract calls
- All-or-nothing transactions (journal touched contracts -> run -> restore on failure)
- Append-only event log
- Error taxonomy shared by every contract
"""

from __future__ import annotations

import copy
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from slotchain.utils import (
    ZERO_ADDRESS,
    hash_words,
    is_valid_address,
    to_address,
)

logger = logging.getLogger("slotchain.chain")

# =========================
# EXCEPTIONS
# =========================

class ChainError(Exception):
    """Base revert. `reason` is the short machine-readable failure code."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AuthorizationError(ChainError):
    """Caller is not the owner / not a registered machine"""


class ValidationError(ChainError):
    """Invalid amount, address, state or configuration"""


class InsufficientFundsError(ChainError):
    """Balance or allowance too low"""


class ReentrancyError(ChainError):
    """Nested call into a guarded operation"""


# =========================
# DOMAIN MODELS
# =========================

@dataclass
class Block:
    number: int
    timestamp: int
    prevrandao: int


@dataclass(frozen=True)
class CallFrame:
    sender: str
    origin: str
    value: int = 0


@dataclass(frozen=True)
class Event:
    name: str
    address: str
    args: Dict[str, Any]
    block_number: int
    tx_index: int


@dataclass
class Journal:
    """Pre-transaction copies, taken the first time a contract is entered."""

    native: Dict[str, int]
    event_count: int
    nonce: int
    states: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    created: List[str] = field(default_factory=list)

    def save(self, contract: "Contract") -> None:
        if contract.address in self.states or contract.address in self.created:
            return
        self.states[contract.address] = contract._export_state()


# =========================
# CHAIN
# =========================

class Chain:
    """
    In-memory ledger every contract lives on.
    State-mutating calls only happen inside `transact`; contracts reach
    each other through `call` so the journal sees every contract touched.
    """

    def __init__(
        self,
        genesis_time: Optional[int] = None,
        block_time: int = 12,
        seed: str = "genesis",
    ) -> None:
        self.block = Block(
            number=0,
            timestamp=int(genesis_time if genesis_time is not None else time.time()),
            prevrandao=hash_words(seed),
        )
        self.block_time = block_time
        self.auto_mine = True
        self.tx_count = 0
        self.events: List[Event] = []

        self._contracts: Dict[str, "Contract"] = {}
        self._native: Dict[str, int] = {}
        self._frames: List[CallFrame] = []
        self._nonce = 0
        self._journal: Optional[Journal] = None

    # ---------- accounts ----------

    def new_address(self, label: str = "") -> str:
        self._nonce += 1
        return to_address(hash_words(label, self._nonce, self.block.prevrandao))

    def create_account(self, label: str = "account", native: int = 0) -> str:
        address = self.new_address(label)
        if native:
            self._native[address] = native
        return address

    def register(self, contract: "Contract") -> None:
        self._contracts[contract.address] = contract
        if self._journal is not None:
            self._journal.created.append(contract.address)

    def is_contract(self, address: str) -> bool:
        return address in self._contracts

    def contract_at(self, address: str) -> "Contract":
        try:
            return self._contracts[address]
        except KeyError:
            raise ValidationError(f"no contract at {address}") from None

    # ---------- native value ----------

    def native_balance(self, address: str) -> int:
        return self._native.get(address, 0)

    def fund_native(self, address: str, amount: int) -> None:
        """Faucet for externally owned accounts."""
        self._native[address] = self._native.get(address, 0) + amount

    def send_native(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise ValidationError("invalid amount")
        if not is_valid_address(to):
            raise ValidationError("invalid recipient")
        balance = self._native.get(sender, 0)
        if amount > balance:
            raise InsufficientFundsError("insufficient native balance")
        self._native[sender] = balance - amount
        self._native[to] = self._native.get(to, 0) + amount

    # ---------- blocks ----------

    def mine(self, seconds: Optional[int] = None) -> Block:
        self.block = Block(
            number=self.block.number + 1,
            timestamp=self.block.timestamp + (self.block_time if seconds is None else seconds),
            prevrandao=hash_words(self.block.prevrandao, self.block.number + 1),
        )
        return self.block

    # ---------- frames ----------

    @property
    def frame(self) -> CallFrame:
        if not self._frames:
            raise ChainError("no active call frame")
        return self._frames[-1]

    @property
    def msg_sender(self) -> str:
        return self.frame.sender

    @property
    def tx_origin(self) -> str:
        return self.frame.origin

    # ---------- execution ----------

    def transact(self, sender: str, fn: Callable[..., Any], *args: Any, value: int = 0, **kwargs: Any) -> Any:
        """
        Run one externally submitted call atomically.
        Any exception restores native balances, the event log and every
        contract the transaction called into (via `transact` or `call`).
        """
        if self._frames:
            raise ChainError("transaction already in progress")
        if not is_valid_address(sender):
            raise ValidationError("invalid sender")

        if self.auto_mine:
            self.mine()

        self._journal = Journal(native=dict(self._native), event_count=len(self.events), nonce=self._nonce)
        self._frames.append(CallFrame(sender=sender, origin=sender, value=value))
        try:
            self._touch(fn)
            if value:
                self.send_native(sender, _target_of(fn), value)
            result = fn(*args, **kwargs)
        except Exception as e:
            self._restore()
            logger.warning(f"Reverted {getattr(fn, '__name__', fn)} from {sender}: {e}")
            raise
        finally:
            self._frames.pop()
            self._journal = None

        self.tx_count += 1
        return result

    def call(self, sender: str, fn: Callable[..., Any], *args: Any, value: int = 0, **kwargs: Any) -> Any:
        """Nested call from a contract; failures propagate to the outer transaction."""
        frame = CallFrame(sender=sender, origin=self.tx_origin, value=value)
        self._touch(fn)
        if value:
            self.send_native(sender, _target_of(fn), value)
        self._frames.append(frame)
        try:
            return fn(*args, **kwargs)
        finally:
            self._frames.pop()

    def emit(self, address: str, name: str, **args: Any) -> Event:
        event = Event(
            name=name,
            address=address,
            args=args,
            block_number=self.block.number,
            tx_index=self.tx_count,
        )
        self.events.append(event)
        return event

    def events_since(self, mark: int, name: Optional[str] = None) -> List[Event]:
        return [e for e in self.events[mark:] if name is None or e.name == name]

    # ---------- journal ----------

    def _touch(self, fn: Callable[..., Any]) -> None:
        target = getattr(fn, "__self__", None)
        if self._journal is not None and isinstance(target, Contract):
            self._journal.save(target)

    def _restore(self) -> None:
        journal = self._journal
        for address in journal.created:
            self._contracts.pop(address, None)
        for address, state in journal.states.items():
            self._contracts[address]._import_state(state)
        self._native = journal.native
        del self.events[journal.event_count:]
        self._nonce = journal.nonce


def _target_of(fn: Callable[..., Any]) -> str:
    target = getattr(fn, "__self__", None)
    if not isinstance(target, Contract):
        raise ValidationError("value can only be sent to a contract")
    return target.address


# =========================
# CONTRACT BASES
# =========================

class Contract:
    """A stateful account with code. References other contracts by address."""

    def __init__(self, chain: Chain, label: Optional[str] = None) -> None:
        self.chain = chain
        self.address = chain.new_address(label or type(self).__name__)
        self._entered = False
        chain.register(self)

    def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return self.chain.call(self.address, fn, *args, **kwargs)

    def _emit(self, name: str, **args: Any) -> Event:
        return self.chain.emit(self.address, name, **args)

    def native_balance(self) -> int:
        return self.chain.native_balance(self.address)

    def receive(self) -> None:
        """Accept native value sent with the call."""

    def _export_state(self) -> Dict[str, Any]:
        return copy.deepcopy({k: v for k, v in vars(self).items() if k != "chain"})

    def _import_state(self, state: Dict[str, Any]) -> None:
        chain = self.chain
        self.__dict__.clear()
        self.__dict__.update(state)
        self.chain = chain


class Ownable(Contract):
    def __init__(self, chain: Chain, owner: str = ZERO_ADDRESS, label: Optional[str] = None) -> None:
        super().__init__(chain, label)
        self.owner = owner

    def transfer_ownership(self, new_owner: str) -> None:
        if self.chain.msg_sender != self.owner:
            raise AuthorizationError("caller is not the owner")
        if not is_valid_address(new_owner):
            raise ValidationError("new owner is the zero address")
        self._set_owner(new_owner)

    def _set_owner(self, new_owner: str) -> None:
        previous, self.owner = self.owner, new_owner
        self._emit("OwnershipTransferred", previous_owner=previous, new_owner=new_owner)


def only_owner(fn: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(fn)
    def wrapper(self: Ownable, *args: Any, **kwargs: Any) -> Any:
        if self.chain.msg_sender != self.owner:
            raise AuthorizationError("caller is not the owner")
        return fn(self, *args, **kwargs)
    return wrapper


def non_reentrant(fn: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(fn)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        if self._entered:
            raise ReentrancyError("reentrant call")
        self._entered = True
        try:
            return fn(self, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper
