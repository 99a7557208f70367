"""
Totals and tax resolution for quotations.

Pure arithmetic over Decimal values; nothing here touches the database.
All money amounts are rounded half-up to two decimal places.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence, Tuple

from quotedesk.core.config import settings
from quotedesk.core.exceptions import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_jurisdiction(code: Optional[str]) -> Optional[str]:
    """Trimmed, upper-cased jurisdiction code, or None when blank."""
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


@dataclass(frozen=True)
class LineInput:
    quantity: Decimal
    unit_rate: Decimal
    discount_percentage: Decimal = Decimal("0")


@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    discount_amount: Decimal
    amount: Decimal


@dataclass(frozen=True)
class TaxComponent:
    name: str
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class TaxBreakdown:
    components: Tuple[TaxComponent, ...]
    is_intra_jurisdiction: bool

    @property
    def total(self) -> Decimal:
        return quantize_money(sum((c.amount for c in self.components), ZERO))

    @property
    def rate(self) -> Decimal:
        return sum((c.rate for c in self.components), Decimal("0"))

    def amount_for(self, name: str) -> Decimal:
        for component in self.components:
            if component.name == name:
                return component.amount
        return ZERO


@dataclass(frozen=True)
class Totals:
    lines: Tuple[LineAmounts, ...]
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total_discount: Decimal
    taxable_amount: Decimal
    tax: TaxBreakdown
    total: Decimal

    @property
    def tax_amount(self) -> Decimal:
        return self.tax.total


@dataclass(frozen=True)
class TaxRules:
    """Flat-rate tax configuration: one rate, split in two when jurisdictions match."""
    rate_percent: Decimal
    intra_components: Tuple[str, str]
    cross_component: str
    company_jurisdiction_code: Optional[str] = None

    @classmethod
    def from_settings(cls) -> "TaxRules":
        intra = tuple(settings.TAX_INTRA_COMPONENTS)
        if len(intra) != 2:
            raise ValueError("TAX_INTRA_COMPONENTS must name exactly two components")
        return cls(
            rate_percent=settings.TAX_RATE_PERCENT,
            intra_components=intra,
            cross_component=settings.TAX_CROSS_COMPONENT,
            company_jurisdiction_code=settings.COMPANY_JURISDICTION_CODE or None,
        )


class TotalsService:
    """Computes line amounts, discounts, tax and grand totals."""

    def __init__(self, rules: Optional[TaxRules] = None):
        self.rules = rules or TaxRules.from_settings()
        if self.rules.rate_percent < 0:
            raise ValueError("Tax rate cannot be negative")

    @staticmethod
    def compute_line(line: LineInput) -> LineAmounts:
        if line.quantity <= 0:
            raise ValidationError("Line quantity must be positive")
        if line.unit_rate < 0:
            raise ValidationError("Line rate cannot be negative")
        if not (0 <= line.discount_percentage <= 100):
            raise ValidationError("Line discount must be between 0 and 100 percent")
        gross = quantize_money(line.quantity * line.unit_rate)
        discount = quantize_money(gross * line.discount_percentage / HUNDRED)
        return LineAmounts(gross=gross, discount_amount=discount, amount=gross - discount)

    def compute_totals(
        self,
        lines: Sequence[LineInput],
        discount_percentage: Decimal,
        client_jurisdiction_code: Optional[str],
        company_jurisdiction_code: Optional[str] = None,
    ) -> Totals:
        """
        Subtotal is the sum of line amounts (already net of line discounts).
        The quotation-level discount is clamped to the subtotal, tax applies to
        what remains, and total = subtotal - discount + tax.
        """
        if not (0 <= discount_percentage <= 100):
            raise ValidationError("Discount must be between 0 and 100 percent")

        line_amounts = tuple(self.compute_line(line) for line in lines)
        subtotal = quantize_money(sum((la.amount for la in line_amounts), ZERO))
        line_discounts = quantize_money(sum((la.discount_amount for la in line_amounts), ZERO))

        discount_amount = min(quantize_money(subtotal * discount_percentage / HUNDRED), subtotal)
        total_discount = min(line_discounts + discount_amount, subtotal)
        taxable = subtotal - discount_amount

        company_code = company_jurisdiction_code
        if company_code is None:
            company_code = self.rules.company_jurisdiction_code
        tax = self.compute_tax(taxable, client_jurisdiction_code, company_code)

        return Totals(
            lines=line_amounts,
            subtotal=subtotal,
            discount_percentage=Decimal(discount_percentage),
            discount_amount=discount_amount,
            total_discount=total_discount,
            taxable_amount=taxable,
            tax=tax,
            total=quantize_money(subtotal - discount_amount + tax.total),
        )

    def compute_tax(
        self,
        taxable_amount: Decimal,
        client_jurisdiction_code: Optional[str],
        company_jurisdiction_code: Optional[str],
    ) -> TaxBreakdown:
        """
        Matching jurisdictions split the flat rate evenly across the two intra
        components; a mismatch or a missing code applies the full rate as the
        single cross-jurisdiction component.
        """
        if taxable_amount < 0:
            raise ValidationError("Taxable amount cannot be negative")

        client_code = normalize_jurisdiction(client_jurisdiction_code)
        company_code = normalize_jurisdiction(company_jurisdiction_code)
        rate = self.rules.rate_percent

        if client_code is not None and client_code == company_code:
            half = rate / 2
            amount = quantize_money(taxable_amount * half / HUNDRED)
            first, second = self.rules.intra_components
            return TaxBreakdown(
                components=(
                    TaxComponent(first, half, amount),
                    TaxComponent(second, half, amount),
                ),
                is_intra_jurisdiction=True,
            )

        return TaxBreakdown(
            components=(
                TaxComponent(self.rules.cross_component, rate, quantize_money(taxable_amount * rate / HUNDRED)),
            ),
            is_intra_jurisdiction=False,
        )

    def recalculate(self, quotation, discount_percentage: Optional[Decimal] = None) -> Totals:
        """
        Recompute a loaded quotation (line items and client required) and copy
        the amounts onto it and its line items.
        """
        items = list(quotation.line_items)
        if discount_percentage is None:
            discount_percentage = Decimal(quotation.discount_percentage or 0)
        client_code = quotation.client.jurisdiction_code if quotation.client is not None else None
        totals = self.compute_totals(line_inputs_from(items), discount_percentage, client_code)

        for item, amounts in zip(items, totals.lines):
            item.discount_amount = amounts.discount_amount
            item.amount = amounts.amount

        first, second = self.rules.intra_components
        quotation.subtotal = totals.subtotal
        quotation.discount_percentage = totals.discount_percentage
        quotation.discount_amount = totals.discount_amount
        quotation.total_discount = totals.total_discount
        quotation.tax_amount = totals.tax_amount
        quotation.cgst_amount = totals.tax.amount_for(first)
        quotation.sgst_amount = totals.tax.amount_for(second)
        quotation.igst_amount = totals.tax.amount_for(self.rules.cross_component)
        quotation.total_amount = totals.total
        return totals


def line_inputs_from(items: Iterable) -> List[LineInput]:
    """Build LineInputs from any objects exposing quantity/unit_rate/discount_percentage."""
    return [
        LineInput(
            quantity=Decimal(item.quantity),
            unit_rate=Decimal(item.unit_rate),
            discount_percentage=Decimal(item.discount_percentage or 0),
        )
        for item in items
    ]
