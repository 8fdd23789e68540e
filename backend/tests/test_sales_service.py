"""
Sales event stream tests: origins, stock deduction, reversals, counters.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from stockflow.models import Product, SaleEvent
from stockflow.services.sales_service import (
    ORIGIN_MOVEMENT,
    ORIGIN_SALES_LEDGER,
    list_sales,
    record_sale,
    refresh_sales_counters,
    reverse_sale,
    sale_records,
)
from stockflow.time_utils import utcnow
from stockflow.validation import ConflictError, NotFoundError, ValidationError


class TestRecordSale:
    def test_deducts_stock_and_tracks_sale_date(self, db_session, business, receive, sell):
        receipt = receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 5, amount=75)

        product = db_session.get(Product, receipt.product_id)
        assert product.current_stock == 15
        assert product.sales_count_30d == 1
        assert product.last_sale_date is not None
        assert sale.origin == ORIGIN_SALES_LEDGER
        assert sale.movement_id is None

    def test_stock_is_clamped_at_zero(self, db_session, business, receive, sell):
        receipt = receive("Rice", 3, total_cost=30)
        sale = sell("Rice", 5, amount=75)

        assert db_session.get(Product, receipt.product_id).current_stock == 0
        assert sale.quantity == 5

    def test_amount_defaults_to_selling_price(self, db_session, business, receive):
        receive("Rice", 10, total_cost=100, selling_price=14)
        sale = record_sale(business_id=business.id, product_name="rice", quantity=2)
        assert sale.amount == 28

    def test_amount_from_unit_price(self, db_session, business, receive):
        receive("Rice", 10, total_cost=100)
        sale = record_sale(business_id=business.id, product_name="Rice", quantity=3, unit_price=12)
        assert sale.amount == 36

    def test_unknown_product(self, db_session, business):
        with pytest.raises(NotFoundError):
            record_sale(business_id=business.id, product_name="Ghost", quantity=1, amount=5)

    def test_rejects_zero_quantity(self, db_session, business, receive):
        receive("Rice", 10, total_cost=100)
        with pytest.raises(ValidationError):
            record_sale(business_id=business.id, product_name="Rice", quantity=0, amount=5)

    def test_old_sale_does_not_bump_window_counter(self, db_session, business, receive, sell):
        receipt = receive("Rice", 10, total_cost=100)
        sell("Rice", 1, amount=15, sold_at=utcnow() - timedelta(days=40))
        assert db_session.get(Product, receipt.product_id).sales_count_30d == 0


class TestReverseSale:
    def test_full_reversal_restocks_and_nets_to_zero(self, db_session, business, receive, sell):
        receipt = receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 5, amount=75)

        reversed_sale = reverse_sale(business_id=business.id, sale_id=sale.id, reason="returned")

        assert reversed_sale.is_reversed
        assert reversed_sale.effective_quantity == 0
        assert reversed_sale.effective_amount == 0
        product = db_session.get(Product, receipt.product_id)
        assert product.current_stock == 20
        assert product.sales_count_30d == 0

    def test_partial_reversal_is_pro_rata(self, db_session, business, receive, sell):
        receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 4, amount=60)

        reverse_sale(business_id=business.id, sale_id=sale.id, quantity=1)
        sale = db_session.get(SaleEvent, sale.id)

        assert sale.effective_quantity == 3
        assert sale.effective_amount == pytest.approx(45)
        assert not sale.is_reversed

    def test_reversal_without_restock(self, db_session, business, receive, sell):
        receipt = receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 5, amount=75)

        reverse_sale(business_id=business.id, sale_id=sale.id, restock=False)
        assert db_session.get(Product, receipt.product_id).current_stock == 15

    def test_cannot_reverse_twice(self, db_session, business, receive, sell):
        receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 5, amount=75)
        reverse_sale(business_id=business.id, sale_id=sale.id)

        with pytest.raises(ConflictError):
            reverse_sale(business_id=business.id, sale_id=sale.id)

    def test_cannot_reverse_more_than_remaining(self, db_session, business, receive, sell):
        receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 5, amount=75)

        with pytest.raises(ValidationError):
            reverse_sale(business_id=business.id, sale_id=sale.id, quantity=6)

    def test_sale_of_other_business_not_found(self, db_session, business, other_business, receive, sell):
        receive("Rice", 20, total_cost=200)
        sale = sell("Rice", 5, amount=75)

        with pytest.raises(NotFoundError):
            reverse_sale(business_id=other_business.id, sale_id=sale.id)


class TestSingleOrigin:
    def _product(self, db_session, business):
        product = Product(business_id=business.id, name="Rice", name_key="rice", current_stock=10)
        db_session.add(product)
        db_session.commit()
        return product

    def test_sales_ledger_event_cannot_carry_movement(self, db_session, business):
        product = self._product(db_session, business)
        db_session.add(SaleEvent(
            business_id=business.id,
            product_id=product.id,
            product_name=product.name,
            origin=ORIGIN_SALES_LEDGER,
            movement_id=1,
            quantity=1,
            amount=10,
            sold_at=utcnow(),
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_movement_event_requires_movement(self, db_session, business):
        product = self._product(db_session, business)
        db_session.add(SaleEvent(
            business_id=business.id,
            product_id=product.id,
            product_name=product.name,
            origin=ORIGIN_MOVEMENT,
            movement_id=None,
            quantity=1,
            amount=10,
            sold_at=utcnow(),
        ))
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_every_recorded_sale_has_exactly_one_origin(self, db_session, business, receive, sell):
        from stockflow.services.movement_service import record_sold_movement

        receive("Rice", 50, total_cost=500)
        sell("Rice", 2, amount=30)
        record_sold_movement(business_id=business.id, product_name="Rice", quantity=3, unit_price=15)

        for sale in db_session.query(SaleEvent).all():
            assert sale.origin in (ORIGIN_SALES_LEDGER, ORIGIN_MOVEMENT)
            assert (sale.origin == ORIGIN_MOVEMENT) == (sale.movement_id is not None)
        assert db_session.query(SaleEvent).count() == 2


class TestProjection:
    def test_sale_records_only_cover_sales_ledger(self, db_session, business, receive, sell):
        from stockflow.services.movement_service import record_sold_movement

        receive("Rice", 50, total_cost=500)
        kept = sell("Rice", 2, amount=30)
        gone = sell("Rice", 1, amount=15)
        reverse_sale(business_id=business.id, sale_id=gone.id)
        record_sold_movement(business_id=business.id, product_name="Rice", quantity=3, unit_price=15)

        records = {r["sale_id"]: r for r in sale_records(business.id)}

        assert set(records) == {kept.id, gone.id}
        assert records[gone.id]["effective_quantity"] == 0
        assert records[gone.id]["is_reversed"] is True
        assert records[kept.id]["effective_amount"] == 30

    def test_list_sales_filters(self, db_session, business, receive, sell):
        receive("Rice", 50, total_cost=500)
        sale = sell("Rice", 2, amount=30)
        reverse_sale(business_id=business.id, sale_id=sale.id)
        sell("Rice", 1, amount=15)

        assert len(list_sales(business.id)) == 2
        assert len(list_sales(business.id, include_reversed=False)) == 1
        with pytest.raises(ValidationError):
            list_sales(business.id, origin="POS")

    def test_refresh_sales_counters(self, db_session, business, receive, sell):
        receipt = receive("Rice", 50, total_cost=500)
        sell("Rice", 1, amount=15)
        sell("Rice", 1, amount=15)
        product = db_session.get(Product, receipt.product_id)
        product.sales_count_30d = 9
        db_session.commit()

        changed = refresh_sales_counters(business.id)
        db_session.commit()

        assert changed == 1
        assert db_session.get(Product, receipt.product_id).sales_count_30d == 2
