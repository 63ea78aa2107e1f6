from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app, has_app_context


@dataclass(frozen=True)
class PricingConfig:
    min_per_page: Decimal = Decimal("250")
    min_per_slide: Decimal = Decimal("150")
    writer_per_page: Decimal = Decimal("200")
    writer_per_slide: Decimal = Decimal("100")
    manager_assign_fee: Decimal = Decimal("10")
    manager_submit_base: Decimal = Decimal("10")
    manager_submit_per_extra_unit: Decimal = Decimal("5")

    def to_dict(self) -> dict:
        return {
            "min_per_page": str(self.min_per_page),
            "min_per_slide": str(self.min_per_slide),
            "writer_per_page": str(self.writer_per_page),
            "writer_per_slide": str(self.writer_per_slide),
            "manager_assign_fee": str(self.manager_assign_fee),
            "manager_submit_base": str(self.manager_submit_base),
            "manager_submit_per_extra_unit": str(self.manager_submit_per_extra_unit),
        }


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = Decimal(raw)
    except (InvalidOperation, ValueError):
        return default
    if value < 0:
        return default
    return value


def load_pricing_config() -> PricingConfig:
    base = PricingConfig()
    return PricingConfig(
        min_per_page=_env_decimal("PRICE_MIN_PER_PAGE", base.min_per_page),
        min_per_slide=_env_decimal("PRICE_MIN_PER_SLIDE", base.min_per_slide),
        writer_per_page=_env_decimal("WRITER_RATE_PER_PAGE", base.writer_per_page),
        writer_per_slide=_env_decimal("WRITER_RATE_PER_SLIDE", base.writer_per_slide),
        manager_assign_fee=_env_decimal("MANAGER_ASSIGN_FEE", base.manager_assign_fee),
        manager_submit_base=_env_decimal("MANAGER_SUBMIT_BASE_FEE", base.manager_submit_base),
        manager_submit_per_extra_unit=_env_decimal(
            "MANAGER_SUBMIT_PER_EXTRA_UNIT", base.manager_submit_per_extra_unit
        ),
    )


def get_pricing_config() -> PricingConfig:
    if has_app_context():
        cfg = current_app.config.get("PRICING_CONFIG")
        if isinstance(cfg, PricingConfig):
            return cfg
    return load_pricing_config()


def _units(value) -> int:
    try:
        parsed = int(value or 0)
    except (TypeError, ValueError):
        parsed = 0
    return parsed if parsed > 0 else 0


def minimum_price(pages, slides, config: PricingConfig) -> Decimal:
    return _units(pages) * config.min_per_page + _units(slides) * config.min_per_slide


def default_writer_earnings(pages, slides, config: PricingConfig) -> Decimal:
    return _units(pages) * config.writer_per_page + _units(slides) * config.writer_per_slide
