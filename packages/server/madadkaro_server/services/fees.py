"""Fee breakdown derived from a task budget."""

from __future__ import annotations

from dataclasses import dataclass

from madadkaro_server.core.config import Settings, get_settings


@dataclass(frozen=True)
class FeeSchedule:
    platform_fee_percentage: float = 5.0
    commission_percentage: float = 15.0
    trust_and_support_fee: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeeSchedule":
        return cls(
            platform_fee_percentage=settings.platform_fee_percentage,
            commission_percentage=settings.commission_percentage,
            trust_and_support_fee=settings.trust_and_support_fee,
        )


def compute_fees(budget: float, schedule: FeeSchedule) -> dict[str, float]:
    """Return the fee columns for a budget.

    The customer pays budget + platform fee + trust fee; the tasker receives
    budget minus commission.
    """
    platform_fee = round(budget * schedule.platform_fee_percentage / 100, 2)
    commission_rate = schedule.commission_percentage / 100
    commission_amount = round(budget * commission_rate, 2)
    return {
        "platform_fee": platform_fee,
        "commission_rate": commission_rate,
        "commission_amount": commission_amount,
        "trust_and_support_fee": schedule.trust_and_support_fee,
        "final_tasker_payout": round(budget - commission_amount, 2),
        "total_amount_paid_by_customer": round(
            budget + platform_fee + schedule.trust_and_support_fee, 2
        ),
    }


def get_fee_schedule() -> FeeSchedule:
    """FastAPI dependency for the configured fee schedule."""
    return FeeSchedule.from_settings(get_settings())
