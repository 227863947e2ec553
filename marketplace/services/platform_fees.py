# marketplace/services/platform_fees.py
"""
Platform fee arithmetic.

These functions are pure: the same gross amount and fee configuration always
produce the same split, so an earnings preview shown to a client and the
earning recorded at completion never disagree.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from ..core.config import PlatformFeeConfig, settings
from ..schemas.earnings import EarningsBreakdown

CENT = Decimal("0.01")

_fee_config: PlatformFeeConfig = settings.fee_config()

Amount = Union[Decimal, int, float, str]


def get_platform_fee_config() -> PlatformFeeConfig:
    """Process-wide fee configuration, built once from settings at import."""
    return _fee_config


def _to_decimal(value: Amount) -> Decimal:
    if isinstance(value, float):
        # Floats carry binary noise; go through str so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


def calculate_platform_fee(gross_amount: Amount, config: Optional[PlatformFeeConfig] = None) -> Decimal:
    """
    Platform cut of a gross amount.

    fee = max(gross * fee_rate, minimum_fee), rounded half-up to cents.
    """
    config = config or _fee_config
    gross = _to_decimal(gross_amount)
    fee = max(gross * config.fee_rate, config.minimum_fee)
    return fee.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_earnings(gross_amount: Amount, config: Optional[PlatformFeeConfig] = None) -> EarningsBreakdown:
    """
    Split a gross amount into platform fee and provider amount.

    The provider amount may come out negative when the gross is below the
    minimum fee; callers that persist earnings must reject that case.
    """
    config = config or _fee_config
    gross = _to_decimal(gross_amount).quantize(CENT, rounding=ROUND_HALF_UP)
    fee = calculate_platform_fee(gross, config)
    return EarningsBreakdown(
        gross_amount=gross,
        platform_fee=fee,
        provider_amount=gross - fee,
        currency=config.currency,
        fee_percentage=config.percentage,
    )
