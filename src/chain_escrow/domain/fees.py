"""Fee & transfer policy.

Pure computation: how a released escrow splits between provider and fee
collector, and who receives what on release or refund. All arithmetic is
unsigned 256-bit with floor division; leaving that range is a validation
error, never a wraparound.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from chain_escrow.domain.exceptions import ArithmeticOverflowError, FeeTooHighError
from chain_escrow.domain.models import UINT256_MAX, FeeSplit, Payout

if TYPE_CHECKING:
    from chain_escrow.domain.models import EscrowRecord

BASIS_POINTS = 10_000
MAX_FEE_RATE = 1_000  # 10%
DEFAULT_FEE_RATE = 250  # 2.5%


def check_uint256(value: int) -> int:
    """Return ``value`` if it fits in uint256, else raise ArithmeticOverflowError."""
    if value < 0 or value > UINT256_MAX:
        raise ArithmeticOverflowError(value)
    return value


def validate_fee_rate(fee_rate: int, max_fee_rate: int = MAX_FEE_RATE) -> int:
    """Check ``0 <= fee_rate <= max_fee_rate``."""
    if fee_rate < 0:
        raise ArithmeticOverflowError(fee_rate)
    if fee_rate > max_fee_rate:
        raise FeeTooHighError(fee_rate, max_fee_rate)
    return fee_rate


def compute_fee_split(amount: int, fee_rate: int) -> FeeSplit:
    """Split ``amount`` into provider share and fee.

    ``fee = floor(amount * fee_rate / 10000)``; the provider gets the rest, so
    the two parts always sum to ``amount`` exactly.
    """
    check_uint256(amount)
    fee_amount = check_uint256(amount * fee_rate) // BASIS_POINTS
    return FeeSplit(provider_amount=amount - fee_amount, fee_amount=fee_amount)


def release_payouts(record: EscrowRecord, fee_collector: str) -> list[Payout]:
    """Payouts for a release: provider share, then the fee if nonzero."""
    split = compute_fee_split(record.amount, record.fee_rate)
    payouts = [Payout(recipient=record.provider, amount=split.provider_amount)]
    if split.fee_amount:
        payouts.append(Payout(recipient=fee_collector, amount=split.fee_amount))
    return payouts


def refund_payouts(record: EscrowRecord) -> list[Payout]:
    """Refunds return the full principal to the client; no fee is taken."""
    return [Payout(recipient=record.client, amount=record.amount)]
