from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Optional, Any
from datetime import datetime


@dataclass(frozen=True)
class Transaction:
    id: str
    amount: int
    status: str
    dispensed: bool
    dispensed_count: int
    created_at: datetime
    updated_at: datetime
    provider: Optional[str] = None
    provider_reference: Optional[str] = None
    provider_event_type: Optional[str] = None
    payer_reference: Optional[str] = None
    locked_by: Optional[str] = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        return cls(
            id=str(row["id"]),
            amount=int(row["amount"]),
            status=str(row["status"]),
            dispensed=bool(row["dispensed"]),
            dispensed_count=int(row.get("dispensed_count") or 0),
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            provider=row.get("provider"),
            provider_reference=row.get("provider_reference"),
            provider_event_type=row.get("provider_event_type"),
            payer_reference=row.get("payer_reference"),
            locked_by=row.get("locked_by"),
            failure_reason=row.get("failure_reason"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
