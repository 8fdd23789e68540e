"""
Reconciliation tests: per-product metric bundle, status tiers and snapshots.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from stockflow.models import ProductMetricSnapshot
from stockflow.services.reconciliation_service import (
    MovementTier,
    compute_product_metrics,
    get_product_metrics,
    list_product_metrics,
    movement_tier,
    refresh_metrics,
)
from stockflow.services.sales_service import reverse_sale


NOW = datetime(2026, 6, 30, 12, 0, 0)


def _product(stock=0, selling_price=None, product_id=1, name="Rice"):
    return SimpleNamespace(id=product_id, name=name, current_stock=stock, selling_price=selling_price)


def _receipt(quantity, total_cost=None, unit_cost=None, supplier_id=None, days_ago=0):
    return SimpleNamespace(
        quantity_received=quantity,
        total_cost=total_cost,
        unit_cost=unit_cost,
        supplier_id=supplier_id,
        received_date=NOW - timedelta(days=days_ago),
    )


def _sale(origin, quantity, amount, effective_quantity=None, effective_amount=None):
    return SimpleNamespace(
        origin=origin,
        quantity=quantity,
        amount=amount,
        effective_quantity=quantity if effective_quantity is None else effective_quantity,
        effective_amount=amount if effective_amount is None else effective_amount,
    )


class TestComputeProductMetrics:
    def test_full_bundle(self):
        receipts = [
            _receipt(50, total_cost=500, supplier_id=1, days_ago=10),
            _receipt(50, total_cost=600, supplier_id=2, days_ago=3),
            _receipt(20, unit_cost=10, supplier_id=1, days_ago=1),
        ]
        sales = [
            _sale("SALES_LEDGER", 40, 600),
            _sale("MOVEMENT", 20, 300),
        ]

        m = compute_product_metrics(_product(stock=60), receipts, sales, now=NOW)

        assert m.units_received == 120
        assert m.total_invested == 1300
        assert m.supplier_count == 2
        assert m.avg_inventory_age == 10
        assert m.units_remaining == 60
        assert m.units_sold == 60
        assert m.revenue == 900
        assert m.avg_selling_price == pytest.approx(15.0)
        assert m.avg_unit_cost == pytest.approx(1300 / 120)
        assert m.turnover_times == pytest.approx(0.5)
        assert m.turnover_rate == pytest.approx(50.0)
        assert m.cost_of_goods_sold == pytest.approx(650.0)
        assert m.profit_margin == pytest.approx((900 - 650) / 900 * 100)
        assert m.break_even_point == 87
        assert m.status == "Normal movement"

    def test_break_even_example(self):
        receipts = [_receipt(100, total_cost=1000)]
        sales = [_sale("SALES_LEDGER", 8, 100)]

        m = compute_product_metrics(_product(stock=92), receipts, sales, now=NOW)

        assert m.avg_selling_price == 12.5
        assert m.break_even_point == 80

    def test_turnover_zero_without_receipts(self):
        sales = [_sale("SALES_LEDGER", 12, 120)]

        m = compute_product_metrics(_product(stock=0), [], sales, now=NOW)

        assert m.units_sold == 12
        assert m.turnover_times == 0
        assert m.turnover_rate == 0
        assert m.avg_unit_cost == 0
        assert m.avg_inventory_age == 0

    def test_reversed_sales_contribute_nothing(self):
        sales = [
            _sale("SALES_LEDGER", 5, 75, effective_quantity=0, effective_amount=0),
            _sale("SALES_LEDGER", 2, 30),
        ]

        m = compute_product_metrics(_product(stock=10), [_receipt(20, total_cost=200)], sales, now=NOW)

        assert m.units_sold == 2
        assert m.revenue == 30

    def test_movement_sales_use_absolute_values(self):
        sales = [_sale("MOVEMENT", -3, -45)]
        m = compute_product_metrics(_product(stock=10), [_receipt(20, total_cost=200)], sales, now=NOW)
        assert m.units_sold == 3
        assert m.revenue == 45

    def test_reversed_movement_sales_contribute_nothing(self):
        sales = [
            _sale("MOVEMENT", 4, 80, effective_quantity=0, effective_amount=0),
            _sale("MOVEMENT", 2, 40, effective_quantity=1, effective_amount=20),
        ]
        m = compute_product_metrics(_product(stock=10), [_receipt(20, total_cost=200)], sales, now=NOW)
        assert m.units_sold == 1
        assert m.revenue == 20

    def test_avg_selling_price_falls_back_to_product_price(self):
        m = compute_product_metrics(
            _product(stock=10, selling_price=9), [_receipt(20, total_cost=200)], [], now=NOW
        )
        assert m.avg_selling_price == 9
        assert m.break_even_point == 23

        bare = compute_product_metrics(_product(stock=10), [_receipt(20, total_cost=200)], [], now=NOW)
        assert bare.avg_selling_price == 0
        assert bare.break_even_point == 0
        assert bare.profit_margin == 0
        assert bare.status == "No sales yet"

    def test_supplier_count_ignores_missing_supplier(self):
        receipts = [_receipt(1, total_cost=1), _receipt(1, total_cost=1, supplier_id=4)]
        m = compute_product_metrics(_product(stock=2), receipts, [], now=NOW)
        assert m.supplier_count == 1

    def test_to_dict_has_bundle_keys(self):
        m = compute_product_metrics(_product(stock=1), [], [], now=NOW)
        data = m.to_dict()
        for key in (
            "units_received", "total_invested", "supplier_count", "units_remaining",
            "avg_inventory_age", "units_sold", "revenue", "avg_selling_price",
            "turnover_times", "turnover_rate", "profit_margin", "avg_unit_cost",
            "break_even_point", "status",
        ):
            assert key in data
        assert data["computed_at"] == "2026-06-30T12:00:00Z"


class TestMovementTier:
    @pytest.mark.parametrize("remaining,turnover,expected", [
        (0, 5.0, MovementTier.OUT_OF_STOCK),
        (4, 5.0, MovementTier.LOW_STOCK),
        (5, 1.5, MovementTier.FAST_MOVING),
        (5, 1.49, MovementTier.NORMAL),
        (5, 0.5, MovementTier.NORMAL),
        (5, 0.49, MovementTier.SLOW_MOVING),
        (5, 0.01, MovementTier.SLOW_MOVING),
        (5, 0, MovementTier.NO_SALES),
    ])
    def test_first_match_wins(self, remaining, turnover, expected):
        assert movement_tier(remaining, turnover) is expected


class TestSnapshots:
    def test_metrics_are_materialized(self, db_session, business, receive, sell):
        receipt = receive("Rice", 50, total_cost=500)
        sell("Rice", 10, amount=150)

        metrics = get_product_metrics(business.id, receipt.product_id)

        snapshot = db_session.get(ProductMetricSnapshot, receipt.product_id)
        assert snapshot is not None
        assert snapshot.is_stale is False
        assert snapshot.units_sold == metrics.units_sold == 10
        assert snapshot.revenue == 150

    def test_ledger_write_marks_snapshot_stale(self, db_session, business, receive, sell):
        receipt = receive("Rice", 50, total_cost=500)
        get_product_metrics(business.id, receipt.product_id)

        sale = sell("Rice", 10, amount=150)
        assert db_session.get(ProductMetricSnapshot, receipt.product_id).is_stale is True

        assert get_product_metrics(business.id, receipt.product_id).units_sold == 10

        reverse_sale(business_id=business.id, sale_id=sale.id)
        assert db_session.get(ProductMetricSnapshot, receipt.product_id).is_stale is True

        metrics = get_product_metrics(business.id, receipt.product_id)
        assert metrics.units_sold == 0
        assert metrics.revenue == 0

    def test_both_origins_are_summed(self, db_session, business, receive, sell):
        from stockflow.services.movement_service import record_sold_movement

        receipt = receive("Rice", 50, total_cost=500)
        sell("Rice", 10, amount=150)
        record_sold_movement(business_id=business.id, product_name="Rice", quantity=5, unit_price=14)

        metrics = get_product_metrics(business.id, receipt.product_id)

        assert metrics.units_sold == 15
        assert metrics.revenue == 220
        assert metrics.units_remaining == 35
        assert metrics.turnover_times == pytest.approx(0.3)

    def test_reversed_movement_sale_contributes_nothing(self, db_session, business, receive):
        from stockflow.models import SaleEvent
        from stockflow.services.movement_service import record_sold_movement

        receipt = receive("Rice", 20, total_cost=200)
        movement = record_sold_movement(business_id=business.id, product_name="Rice", quantity=4, unit_price=20)
        sale = db_session.query(SaleEvent).filter_by(movement_id=movement.id).one()

        reverse_sale(business_id=business.id, sale_id=sale.id)
        (metrics,) = refresh_metrics(business.id)

        assert metrics.product_id == receipt.product_id
        assert metrics.units_sold == 0
        assert metrics.revenue == 0
        assert metrics.units_remaining == 20
        assert metrics.status == "No sales yet"

    def test_similar_names_do_not_contaminate(self, db_session, business, receive, sell):
        oil = receive("Palm Oil", 10, total_cost=100)
        receive("Palm Oil Refined", 10, total_cost=300)
        sell("Palm Oil Refined", 4, amount=200)

        metrics = get_product_metrics(business.id, oil.product_id)

        assert metrics.units_received == 10
        assert metrics.total_invested == 100
        assert metrics.units_sold == 0

    def test_list_recomputes_only_stale(self, db_session, business, receive):
        rice = receive("Rice", 50, total_cost=500)
        beans = receive("Beans", 20, total_cost=100)
        list_product_metrics(business.id)

        rice_snapshot = db_session.get(ProductMetricSnapshot, rice.product_id)
        computed_at = rice_snapshot.computed_at
        receive("Beans", 5, total_cost=30)

        items = {m.product_id: m for m in list_product_metrics(business.id)}

        assert items[beans.product_id].units_received == 25
        assert db_session.get(ProductMetricSnapshot, rice.product_id).computed_at == computed_at

    def test_refresh_recomputes_everything(self, db_session, business, receive, sell):
        receive("Rice", 50, total_cost=500)
        receive("Beans", 20, total_cost=100)
        sell("Beans", 20, amount=160)

        results = {m.product_name: m for m in refresh_metrics(business.id)}

        assert results["Rice"].status == "No sales yet"
        assert results["Beans"].status == "Out of Stock"
        assert db_session.query(ProductMetricSnapshot).filter_by(is_stale=True).count() == 0
