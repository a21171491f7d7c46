"""
Tax and totals calculation for billing documents.

``compute_line`` and ``aggregate`` are pure and work on Decimals only.
``DocumentCalculator`` resolves catalog items and the company jurisdiction
and then runs both over a whole document.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from app.common.errors import InvalidDocument, InvalidLineItem, ItemNotFound, MissingUnit
from app.common.validators import ZERO, money, to_decimal
from app.modules.catalog.models import Item
from app.modules.company.models import Company
from app.modules.taxes.jurisdiction import is_inter_jurisdiction
from app.modules.taxes.schemas import (
    DocumentTotals, LineComputation, WithholdingAmount, WithholdingBase,
    WithholdingEntry, WithholdingKind
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


def _number(value, field: str) -> Decimal:
    try:
        return to_decimal(value, field)
    except ValueError as e:
        raise InvalidLineItem(str(e))


def compute_line(
    quantity,
    unit_price,
    discount_pct,
    tax_pct,
    cess_pct,
    inter_jurisdiction: bool
) -> LineComputation:
    """
    Amounts for one line.

    The discount is taken off the gross amount and the resulting taxable
    amount is rounded once; every tax component is then computed on that
    rounded base and rounded itself. Intra-jurisdiction tax is split evenly
    into CGST and SGST, inter-jurisdiction tax is all IGST.
    """
    quantity = _number(quantity, "quantity")
    unit_price = _number(unit_price, "unit price")
    discount_pct = _number(discount_pct if discount_pct is not None else 0, "discount")
    tax_pct = _number(tax_pct if tax_pct is not None else 0, "tax rate")
    cess_pct = _number(cess_pct if cess_pct is not None else 0, "cess rate")

    if quantity <= 0:
        raise InvalidLineItem(f"Quantity must be greater than zero, got {quantity}")
    if unit_price < 0:
        raise InvalidLineItem(f"Unit price cannot be negative, got {unit_price}")
    if discount_pct < 0 or discount_pct > HUNDRED:
        raise InvalidLineItem(f"Discount must be between 0 and 100, got {discount_pct}")
    if tax_pct < 0 or cess_pct < 0:
        raise InvalidLineItem("Tax and cess rates cannot be negative")

    gross = money(quantity * unit_price)
    discount_amount = money(gross * discount_pct / HUNDRED)
    taxable = gross - discount_amount

    cgst = sgst = igst = ZERO
    if inter_jurisdiction:
        igst = money(taxable * tax_pct / HUNDRED)
    else:
        cgst = money(taxable * tax_pct / (HUNDRED * 2))
        sgst = cgst
    cess = money(taxable * cess_pct / HUNDRED)

    tax_amount = cgst + sgst + igst + cess
    return LineComputation(
        gross_amount=gross,
        discount_amount=discount_amount,
        taxable_amount=taxable,
        cgst_amount=cgst,
        sgst_amount=sgst,
        igst_amount=igst,
        cess_amount=cess,
        tax_amount=tax_amount,
        total_amount=taxable + tax_amount,
    )


def aggregate(
    lines: Iterable[LineComputation],
    shipping_amount=ZERO,
    shipping_tax_pct=ZERO,
    inter_jurisdiction: bool = False,
    reverse_charge: bool = False,
    withholding: Optional[Iterable[WithholdingEntry]] = None
) -> DocumentTotals:
    """
    Document totals from already computed lines.

    Shipping tax follows the same intra/inter split as the lines. Under
    reverse charge the taxes are reported but not added to the payable
    total. Withholding is applied last: TCS adds to the total, TDS reduces it.
    """
    totals = DocumentTotals()
    for line in lines:
        totals.subtotal += line.gross_amount
        totals.discount_total += line.discount_amount
        totals.taxable_amount += line.taxable_amount
        totals.cgst_amount += line.cgst_amount
        totals.sgst_amount += line.sgst_amount
        totals.igst_amount += line.igst_amount
        totals.cess_amount += line.cess_amount

    shipping = money(shipping_amount or ZERO)
    shipping_tax_pct = to_decimal(shipping_tax_pct or ZERO, "shipping tax rate")
    if shipping < 0:
        raise InvalidDocument("Shipping amount cannot be negative")
    if shipping > 0 and shipping_tax_pct > 0:
        shipping_tax = money(shipping * shipping_tax_pct / HUNDRED)
        if inter_jurisdiction:
            totals.igst_amount += shipping_tax
        else:
            cgst_part = money(shipping_tax / 2)
            totals.cgst_amount += cgst_part
            totals.sgst_amount += shipping_tax - cgst_part
        totals.shipping_tax_amount = shipping_tax
    totals.shipping_amount = shipping

    totals.tax_total = totals.cgst_amount + totals.sgst_amount + totals.igst_amount + totals.cess_amount
    payable = totals.subtotal - totals.discount_total + shipping
    if not reverse_charge:
        payable += totals.tax_total
    totals.total_before_withholding = payable

    for entry in withholding or []:
        base = totals.taxable_amount if entry.applies_to == WithholdingBase.TAXABLE else payable
        amount = money(base * entry.percentage / HUNDRED)
        if entry.kind == WithholdingKind.TDS:
            totals.tds_total += amount
        else:
            totals.tcs_total += amount
        totals.withholdings.append(WithholdingAmount(**entry.model_dump(), amount=amount))

    totals.total_amount = payable + totals.tcs_total - totals.tds_total
    if totals.total_amount < 0:
        raise InvalidDocument("Withholding deductions exceed the document total")
    return totals


@dataclass
class CalculatedLine:
    item: Item
    quantity: Decimal
    unit_price: Decimal
    discount_pct: Decimal
    tax_rate: Decimal
    cess_rate: Decimal
    amounts: LineComputation


@dataclass
class CalculatedDocument:
    place_of_supply: Optional[str]
    is_inter_jurisdiction: bool
    totals: DocumentTotals
    lines: List[CalculatedLine] = field(default_factory=list)


class DocumentCalculator:
    """Runs the line calculator and the aggregator over a whole document"""

    def __init__(self, db: Session):
        self.db = db

    def resolve_items(self, tenant_id: UUID, item_ids: Iterable[UUID]) -> Dict[UUID, Item]:
        """Load catalog items, failing if any is missing, inactive, deleted or has no unit"""
        wanted = set(item_ids)
        items = self.db.query(Item).filter(
            Item.id.in_(wanted),
            Item.tenant_id == tenant_id,
            Item.is_active == True,
            Item.deleted_at.is_(None)
        ).all() if wanted else []

        found = {item.id: item for item in items}
        missing = wanted - set(found)
        if missing:
            raise ItemNotFound(
                "One or more items not found or inactive",
                item_ids=", ".join(sorted(str(m) for m in missing))
            )

        for item in items:
            if item.unit_id is None or item.unit is None:
                raise MissingUnit(f"Item '{item.name}' has no unit of measure", item_id=item.id)
        return found

    def reference_jurisdiction(self, tenant_id: UUID) -> Optional[str]:
        company = self.db.query(Company).filter(Company.id == tenant_id).first()
        return company.state if company else None

    def calculate(
        self,
        tenant_id: UUID,
        lines,
        place_of_supply: Optional[str] = None,
        reverse_charge: bool = False,
        cess_enabled: bool = False,
        add_discount_to_all=None,
        shipping_amount=ZERO,
        shipping_tax_pct=ZERO,
        withholding: Optional[List[WithholdingEntry]] = None
    ) -> CalculatedDocument:
        """
        ``lines`` are objects exposing item_id, quantity, unit_price and
        discount_pct; missing quantity defaults to 1 and missing price to the
        catalog price. ``add_discount_to_all`` overrides every line discount.
        """
        if not lines:
            raise InvalidLineItem("A document needs at least one line item")

        items = self.resolve_items(tenant_id, [line.item_id for line in lines])
        inter = is_inter_jurisdiction(place_of_supply, self.reference_jurisdiction(tenant_id))

        calculated = []
        for line in lines:
            item = items[line.item_id]
            quantity = line.quantity if line.quantity is not None else Decimal('1')
            unit_price = line.unit_price if line.unit_price is not None else item.unit_price
            if add_discount_to_all is not None:
                discount = add_discount_to_all
            else:
                discount = line.discount_pct or ZERO
            cess_rate = item.cess_rate if cess_enabled else ZERO

            amounts = compute_line(quantity, unit_price, discount, item.tax_rate, cess_rate, inter)
            calculated.append(CalculatedLine(
                item=item,
                quantity=_number(quantity, "quantity"),
                unit_price=_number(unit_price, "unit price"),
                discount_pct=_number(discount, "discount"),
                tax_rate=_number(item.tax_rate, "tax rate"),
                cess_rate=_number(cess_rate or ZERO, "cess rate"),
                amounts=amounts
            ))

        totals = aggregate(
            [line.amounts for line in calculated],
            shipping_amount=shipping_amount,
            shipping_tax_pct=shipping_tax_pct,
            inter_jurisdiction=inter,
            reverse_charge=reverse_charge,
            withholding=withholding
        )
        logger.debug(
            f"Calculated {len(calculated)} lines for tenant {tenant_id}: "
            f"total={totals.total_amount} inter={inter}"
        )
        return CalculatedDocument(
            place_of_supply=place_of_supply,
            is_inter_jurisdiction=inter,
            totals=totals,
            lines=calculated
        )
