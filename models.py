from pydantic import BaseModel, ConfigDict, Field, computed_field
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set
from decimal import Decimal


class TransactionKind(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"
    unrecognized = "unrecognized"

    @classmethod
    def from_text(cls, text: str) -> "TransactionKind":
        """Map a raw kind token to a kind. Matching is exact and case-sensitive."""
        try:
            return cls(text)
        except ValueError:
            return cls.unrecognized

    @property
    def moves_funds(self) -> bool:
        return self in (TransactionKind.deposit, TransactionKind.withdrawal)


class ApplyOutcome(str, Enum):
    applied = "applied"
    skipped = "skipped"
    ignored = "ignored"


class TransactionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TransactionKind = Field(..., description="Transaction kind")
    client_id: int = Field(..., ge=0, description="Client identifier")
    transaction_id: int = Field(..., ge=0, description="Transaction identifier")
    amount: Optional[Decimal] = Field(
        None,
        description="Signed amount, meaningful only for deposits and withdrawals"
    )


class FinalClientState(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: int = Field(..., ge=0, description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., ge=0, description="Funds held by open disputes")
    locked: bool = Field(..., description="Whether a chargeback froze the account")

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.available + self.held


@dataclass
class AccountState:
    """Mutable balance state of one client, owned by exactly one engine."""

    client_id: int
    available: Decimal = Decimal("0")
    held: Decimal = Decimal("0")
    locked: bool = False
    ledger: Dict[int, Decimal] = field(default_factory=dict)
    disputed: Set[int] = field(default_factory=set)

    @classmethod
    def new(cls, client_id: int) -> "AccountState":
        return cls(client_id=client_id)

    def snapshot(self) -> FinalClientState:
        return FinalClientState(
            client_id=self.client_id,
            available=self.available,
            held=self.held,
            locked=self.locked
        )
