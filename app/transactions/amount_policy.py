# app/transactions/amount_policy.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from settings import settings


@dataclass(frozen=True)
class AmountPolicy:
    lower_bound: int
    upper_bound: int

    @classmethod
    def from_settings(cls) -> "AmountPolicy":
        return cls(lower_bound=int(settings.AMOUNT_MIN), upper_bound=int(settings.AMOUNT_MAX))

    def validate(self, amount: Any) -> bool:
        # bool is an int subclass; True must not pass as 1
        if isinstance(amount, bool) or not isinstance(amount, int):
            return False
        return self.lower_bound <= amount <= self.upper_bound

    def describe(self) -> str:
        return f"Amount must be {self.lower_bound}-{self.upper_bound}"
