# token.py
"""
Ledger asset: fungible token with transfer / approve / transfer_from.

All amounts are unsigned integers in the smallest unit
(6 decimals for the reference stablecoin).
"""

from __future__ import annotations

from typing import Dict

from slotchain.chain import (
    Chain,
    InsufficientFundsError,
    Ownable,
    ValidationError,
    only_owner,
)
from slotchain.utils import TOKEN_DECIMALS, ZERO_ADDRESS, is_valid_address


class StableToken(Ownable):
    def __init__(
        self,
        chain: Chain,
        owner: str,
        name: str = "USD Coin",
        symbol: str = "USDC",
        decimals: int = TOKEN_DECIMALS,
    ) -> None:
        super().__init__(chain, owner=owner, label=symbol)
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.total_supply = 0
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[str, Dict[str, int]] = {}

    # ---------- views ----------

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(owner, {}).get(spender, 0)

    # ---------- mutations ----------

    def transfer(self, to: str, amount: int) -> bool:
        self._move(self.chain.msg_sender, to, amount)
        return True

    def approve(self, spender: str, amount: int) -> bool:
        if not is_valid_address(spender):
            raise ValidationError("ERC20: approve to the zero address")
        if amount < 0:
            raise ValidationError("ERC20: invalid amount")
        owner = self.chain.msg_sender
        self.allowances.setdefault(owner, {})[spender] = amount
        self._emit("Approval", owner=owner, spender=spender, value=amount)
        return True

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        spender = self.chain.msg_sender
        allowed = self.allowance(sender, spender)
        if amount > allowed:
            raise InsufficientFundsError("ERC20: insufficient allowance")
        self._move(sender, to, amount)
        self.allowances.setdefault(sender, {})[spender] = allowed - amount
        return True

    @only_owner
    def mint(self, to: str, amount: int) -> None:
        if not is_valid_address(to):
            raise ValidationError("ERC20: mint to the zero address")
        if amount < 0:
            raise ValidationError("ERC20: invalid amount")
        self.total_supply += amount
        self.balances[to] = self.balance_of(to) + amount
        self._emit("Transfer", sender=ZERO_ADDRESS, to=to, value=amount)

    def _move(self, sender: str, to: str, amount: int) -> None:
        if not is_valid_address(to):
            raise ValidationError("ERC20: transfer to the zero address")
        if amount < 0:
            raise ValidationError("ERC20: invalid amount")
        balance = self.balance_of(sender)
        if amount > balance:
            raise InsufficientFundsError("ERC20: transfer amount exceeds balance")
        self.balances[sender] = balance - amount
        self.balances[to] = self.balance_of(to) + amount
        self._emit("Transfer", sender=sender, to=to, value=amount)
