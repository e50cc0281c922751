# Overview: Per-line IVA/IEPS computation and invoice tax roll-up in integer cents.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

_BPS = Decimal(10000)


def rate_amount(base_cents: int, rate_bps: int) -> int:
    """base * rate, rounded half-up to the cent."""
    if not rate_bps:
        return 0
    amount = Decimal(base_cents) * Decimal(rate_bps) / _BPS
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineTaxes:
    subtotal_cents: int
    iva_rate_bps: int
    ieps_rate_bps: int
    ieps_cents: int
    iva_cents: int

    @property
    def taxes_cents(self) -> int:
        return self.ieps_cents + self.iva_cents

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.taxes_cents


@dataclass(frozen=True)
class TaxTotals:
    lines: tuple
    subtotal_cents: int
    taxes_cents: int
    total_cents: int


def compute_line_taxes(subtotal_cents: int, iva_rate_bps: int, ieps_rate_bps: int = 0) -> LineTaxes:
    """
    IEPS is charged on the line subtotal; IVA on subtotal + IEPS.

    Each amount is rounded per line before the invoice sums them.
    """
    ieps = rate_amount(subtotal_cents, ieps_rate_bps)
    iva = rate_amount(subtotal_cents + ieps, iva_rate_bps)
    return LineTaxes(
        subtotal_cents=subtotal_cents,
        iva_rate_bps=iva_rate_bps,
        ieps_rate_bps=ieps_rate_bps,
        ieps_cents=ieps,
        iva_cents=iva,
    )


def roll_up(lines: list[LineTaxes]) -> TaxTotals:
    subtotal = sum(line.subtotal_cents for line in lines)
    taxes = sum(line.taxes_cents for line in lines)
    return TaxTotals(
        lines=tuple(lines),
        subtotal_cents=subtotal,
        taxes_cents=taxes,
        total_cents=subtotal + taxes,
    )


def item_rates(item, default_iva_rate_bps: int) -> tuple[int, int]:
    """(iva_bps, ieps_bps) for a sale item, from its product or the default."""
    product = getattr(item, "product", None)
    iva = default_iva_rate_bps
    ieps = 0
    if product is not None:
        if product.iva_rate_bps is not None:
            iva = product.iva_rate_bps
        ieps = product.ieps_rate_bps or 0
    return iva, ieps


def compute_sale_taxes(sale_items, default_iva_rate_bps: int) -> TaxTotals:
    lines = []
    for item in sale_items:
        iva, ieps = item_rates(item, default_iva_rate_bps)
        lines.append(compute_line_taxes(item.total_price_cents, iva, ieps))
    return roll_up(lines)
