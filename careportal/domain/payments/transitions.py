"""
Payment transitions

The legal status graph, and one update struct per transition naming the only
columns that transition may write. PaymentLedger.apply() turns a struct into a
single conditional UPDATE guarded by the struct's source statuses.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ...models_invoice import Payment, PaymentStatus

# current status -> statuses it may move to
TRANSITIONS: dict[Optional[str], frozenset] = {
    None: frozenset({PaymentStatus.PENDING, PaymentStatus.FREE}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    # Further partial refunds
    PaymentStatus.REFUNDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FREE: frozenset(),
}

# Statuses that block a new initiation for the same booking
ACTIVE_STATUSES = (
    PaymentStatus.PENDING,
    PaymentStatus.PAID,
    PaymentStatus.FREE,
    PaymentStatus.REFUNDED,
)

REFUNDABLE_STATUSES = (PaymentStatus.PAID, PaymentStatus.REFUNDED)


def can_transition(current: Optional[str], target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def sources_for(target: str) -> tuple[str, ...]:
    """Existing statuses from which target is reachable"""
    return tuple(
        status
        for status, targets in TRANSITIONS.items()
        if status is not None and target in targets
    )


@dataclass(frozen=True)
class MarkPaid:
    paid_at: datetime

    target = PaymentStatus.PAID

    def conditions(self) -> list:
        return []

    def values(self) -> dict[str, Any]:
        return {"status": PaymentStatus.PAID, "paid_at": self.paid_at}


@dataclass(frozen=True)
class MarkFailed:
    # A failure only applies to the attempt currently in flight
    reference: str

    target = PaymentStatus.FAILED

    def conditions(self) -> list:
        return [Payment.provider_ref == self.reference]

    def values(self) -> dict[str, Any]:
        return {"status": PaymentStatus.FAILED}


@dataclass(frozen=True)
class MarkRefunded:
    amount: float
    refunded_at: datetime

    target = PaymentStatus.REFUNDED

    def conditions(self) -> list:
        # Processed refunds never exceed the original amount
        return [Payment.refunded_amount + self.amount <= Payment.amount + 0.005]

    def values(self) -> dict[str, Any]:
        return {
            "status": PaymentStatus.REFUNDED,
            "refunded_amount": Payment.refunded_amount + self.amount,
            "refunded_at": self.refunded_at,
        }


@dataclass(frozen=True)
class Reinitiate:
    provider_ref: str

    target = PaymentStatus.PENDING

    def conditions(self) -> list:
        return []

    def values(self) -> dict[str, Any]:
        return {"status": PaymentStatus.PENDING, "provider_ref": self.provider_ref}
