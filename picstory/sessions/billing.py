"""
Credit ledger used when no external billing service is wired in.
"""

from __future__ import annotations

import asyncio
from typing import Mapping

from .errors import InsufficientQuota, ValidationError


class InMemoryQuotaLedger:
    def __init__(self, balances: Mapping[str, int] | None = None) -> None:
        self._balances: dict[str, int] = dict(balances or {})
        self._lock = asyncio.Lock()

    def balance(self, account_id: str) -> int:
        return self._balances.get(account_id, 0)

    def credit(self, account_id: str, amount: int) -> int:
        self._balances[account_id] = self.balance(account_id) + amount
        return self._balances[account_id]

    async def charge(self, account_id: str, amount: int) -> int:
        if amount < 1:
            raise ValidationError("Charge amount must be positive.")
        async with self._lock:
            current = self.balance(account_id)
            if current < amount:
                raise InsufficientQuota(account_id, amount, current)
            self._balances[account_id] = current - amount
            return self._balances[account_id]
