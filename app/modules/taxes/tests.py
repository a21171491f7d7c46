"""
Tests for jurisdiction matching, line tax calculation and document totals
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from app.common.errors import InvalidDocument, InvalidLineItem, ItemNotFound, MissingUnit
from app.modules.catalog.models import Item
from app.modules.taxes.calculator import DocumentCalculator, aggregate, compute_line
from app.modules.taxes.jurisdiction import is_inter_jurisdiction, is_same_jurisdiction
from app.modules.taxes.schemas import WithholdingBase, WithholdingEntry, WithholdingKind
from app.modules.documents.schemas import LineItemCreate

D = Decimal


# ===== JURISDICTION =====

class TestJurisdiction:
    def test_state_code_with_number(self):
        assert is_same_jurisdiction("GJ (24)", "Gujarat") is True

    def test_different_states(self):
        assert is_same_jurisdiction("Maharashtra", "Gujarat") is False

    def test_empty_place(self):
        assert is_same_jurisdiction("", "Gujarat") is False
        assert is_same_jurisdiction(None, "Gujarat") is False
        assert is_same_jurisdiction("Gujarat", "  ") is False

    def test_containment_either_way(self):
        assert is_same_jurisdiction("gujarat", "Gujarat State") is True
        assert is_same_jurisdiction("Gujarat, Ahmedabad", "gujarat") is True

    def test_bare_state_code(self):
        assert is_same_jurisdiction("MH", "Maharashtra") is True
        assert is_same_jurisdiction("KA 29", "Karnataka") is True

    def test_reverse_code_scan(self):
        assert is_same_jurisdiction("Tamil Nadu", "TN") is True

    def test_inter_is_negation(self):
        assert is_inter_jurisdiction("GJ (24)", "Gujarat") is False
        assert is_inter_jurisdiction("Maharashtra", "Gujarat") is True
        assert is_inter_jurisdiction("", "Gujarat") is True


# ===== LINE CALCULATION =====

class TestComputeLine:
    def test_intra_state_split(self):
        line = compute_line(D("2"), D("100"), D("10"), D("18"), D("0"), inter_jurisdiction=False)
        assert line.discount_amount == D("20.00")
        assert line.taxable_amount == D("180.00")
        assert line.cgst_amount == D("16.20")
        assert line.sgst_amount == D("16.20")
        assert line.igst_amount == D("0")
        assert line.tax_amount == D("32.40")
        assert line.total_amount == D("212.40")

    def test_inter_state_is_all_igst(self):
        line = compute_line(D("2"), D("100"), D("10"), D("18"), D("0"), inter_jurisdiction=True)
        assert line.igst_amount == D("32.40")
        assert line.cgst_amount == line.sgst_amount == D("0")
        assert line.total_amount == D("212.40")

    def test_cess_added_to_tax(self):
        line = compute_line(D("1"), D("1000"), D("0"), D("28"), D("12"), inter_jurisdiction=True)
        assert line.igst_amount == D("280.00")
        assert line.cess_amount == D("120.00")
        assert line.tax_amount == D("400.00")
        assert line.total_amount == D("1400.00")

    def test_rounding_half_up(self):
        line = compute_line(D("3"), D("33.33"), D("0"), D("5"), D("0"), inter_jurisdiction=False)
        # taxable 99.99; 2.5% of it is 2.49975
        assert line.taxable_amount == D("99.99")
        assert line.cgst_amount == D("2.50")
        assert line.total_amount == line.taxable_amount + line.tax_amount

    def test_taxable_plus_discount_is_gross(self):
        line = compute_line(D("7"), D("12.34"), D("12.5"), D("12"), D("0"), inter_jurisdiction=False)
        assert line.taxable_amount + line.discount_amount == (D("7") * D("12.34")).quantize(D("0.01"))

    def test_accepts_plain_numbers(self):
        line = compute_line(2, 100.0, "10", 18, None, inter_jurisdiction=False)
        assert line.total_amount == D("212.40")

    @pytest.mark.parametrize("quantity,price,discount", [
        (D("0"), D("100"), D("0")),
        (D("-1"), D("100"), D("0")),
        (D("1"), D("-5"), D("0")),
        (D("1"), D("100"), D("101")),
        (D("1"), D("100"), D("-1")),
        ("abc", D("100"), D("0")),
        (D("NaN"), D("100"), D("0")),
        (D("1"), float("inf"), D("0")),
    ])
    def test_invalid_inputs(self, quantity, price, discount):
        with pytest.raises(InvalidLineItem):
            compute_line(quantity, price, discount, D("18"), D("0"), inter_jurisdiction=False)


# ===== AGGREGATION =====

class TestAggregate:
    def _lines(self, inter=False):
        return [
            compute_line(D("2"), D("100"), D("10"), D("18"), D("0"), inter),
            compute_line(D("1"), D("50"), D("0"), D("5"), D("0"), inter),
        ]

    def test_sums_lines(self):
        totals = aggregate(self._lines())
        assert totals.subtotal == D("250.00")
        assert totals.discount_total == D("20.00")
        assert totals.taxable_amount == D("230.00")
        assert totals.cgst_amount == D("17.45")
        assert totals.sgst_amount == D("17.45")
        assert totals.tax_total == D("34.90")
        assert totals.total_amount == D("264.90")

    def test_shipping_tax_intra(self):
        totals = aggregate(self._lines(), shipping_amount=D("100"), shipping_tax_pct=D("18"))
        assert totals.shipping_tax_amount == D("18.00")
        assert totals.cgst_amount == D("26.45")
        assert totals.sgst_amount == D("26.45")
        assert totals.total_amount == D("264.90") + D("100") + D("18.00")

    def test_shipping_tax_inter(self):
        totals = aggregate(self._lines(inter=True), shipping_amount=D("100"), shipping_tax_pct=D("18"),
                           inter_jurisdiction=True)
        assert totals.igst_amount == D("34.90") + D("18.00")
        assert totals.cgst_amount == D("0")

    def test_no_shipping_tax_without_shipping(self):
        totals = aggregate(self._lines(), shipping_amount=D("0"), shipping_tax_pct=D("18"))
        assert totals.shipping_tax_amount == D("0")

    def test_reverse_charge_excludes_tax_from_total(self):
        totals = aggregate(self._lines(), reverse_charge=True)
        assert totals.tax_total == D("34.90")
        assert totals.total_amount == D("230.00")

    def test_withholding(self):
        withholding = [
            WithholdingEntry(kind=WithholdingKind.TDS, percentage=D("10"), applies_to=WithholdingBase.TAXABLE),
            WithholdingEntry(kind=WithholdingKind.TCS, percentage=D("1"), applies_to=WithholdingBase.TOTAL),
        ]
        totals = aggregate(self._lines(), withholding=withholding)
        assert totals.total_before_withholding == D("264.90")
        assert totals.tds_total == D("23.00")
        assert totals.tcs_total == D("2.65")
        assert totals.total_amount == D("264.90") + D("2.65") - D("23.00")
        assert [w.amount for w in totals.withholdings] == [D("23.00"), D("2.65")]

    def test_withholding_cannot_make_total_negative(self):
        withholding = [
            WithholdingEntry(kind=WithholdingKind.TDS, percentage=D("100"), applies_to=WithholdingBase.TOTAL),
            WithholdingEntry(kind=WithholdingKind.TDS, percentage=D("50"), applies_to=WithholdingBase.TOTAL),
        ]
        with pytest.raises(InvalidDocument):
            aggregate(self._lines(), withholding=withholding)


# ===== CATALOG RESOLUTION =====

class TestDocumentCalculator:
    def test_calculates_from_catalog(self, db_session, sample_company, sample_item):
        calculator = DocumentCalculator(db_session)
        result = calculator.calculate(
            sample_company.id,
            [LineItemCreate(item_id=sample_item.id, quantity=D("2"), discount_pct=D("10"))],
            place_of_supply="GJ (24)"
        )
        assert result.is_inter_jurisdiction is False
        assert result.lines[0].unit_price == D("100.00")
        assert result.totals.total_amount == D("212.40")

    def test_defaults_quantity_and_global_discount(self, db_session, sample_company, sample_item):
        result = DocumentCalculator(db_session).calculate(
            sample_company.id,
            [LineItemCreate(item_id=sample_item.id, discount_pct=D("50"))],
            place_of_supply="Maharashtra",
            add_discount_to_all=D("10")
        )
        line = result.lines[0]
        assert line.quantity == D("1")
        assert line.discount_pct == D("10")
        assert line.amounts.igst_amount == D("16.20")

    def test_cess_only_when_enabled(self, db_session, sample_company, sample_item):
        lines = [LineItemCreate(item_id=sample_item.id, quantity=D("1"))]
        calculator = DocumentCalculator(db_session)
        without = calculator.calculate(sample_company.id, lines, place_of_supply="Gujarat")
        with_cess = calculator.calculate(sample_company.id, lines, place_of_supply="Gujarat", cess_enabled=True)
        assert without.totals.cess_amount == D("0")
        assert with_cess.totals.cess_amount == D("1.00")

    def test_unknown_item(self, db_session, sample_company, sample_item):
        with pytest.raises(ItemNotFound):
            DocumentCalculator(db_session).calculate(
                sample_company.id, [LineItemCreate(item_id=uuid4(), quantity=D("1"))]
            )

    def test_inactive_item(self, db_session, sample_company, sample_item):
        sample_item.is_active = False
        db_session.commit()
        with pytest.raises(ItemNotFound):
            DocumentCalculator(db_session).calculate(
                sample_company.id, [LineItemCreate(item_id=sample_item.id)]
            )

    def test_item_without_unit(self, db_session, sample_company):
        item = Item(tenant_id=sample_company.id, name="Loose item", unit_price=D("10"), tax_rate=D("5"))
        db_session.add(item)
        db_session.commit()
        with pytest.raises(MissingUnit):
            DocumentCalculator(db_session).calculate(sample_company.id, [LineItemCreate(item_id=item.id)])

    def test_item_of_other_tenant(self, db_session, sample_item):
        with pytest.raises(ItemNotFound):
            DocumentCalculator(db_session).calculate(uuid4(), [LineItemCreate(item_id=sample_item.id)])
