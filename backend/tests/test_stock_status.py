"""
Stock status classifier and inventory overview tests.
"""

from datetime import timedelta

import pytest

from stockflow.services.stock_status_service import (
    StockPolicy,
    StockStatus,
    classify_stock,
    get_inventory_overview,
    recommendation_for,
)
from stockflow.time_utils import utcnow


class TestClassifyStock:
    @pytest.mark.parametrize("stock,sales,expected", [
        (0, 0, StockStatus.OUT),
        (0, 12, StockStatus.OUT),
        (1, 0, StockStatus.LOW),
        (4.5, 3, StockStatus.LOW),
        (5, 0, StockStatus.HEALTHY),
        (20, 0, StockStatus.HEALTHY),
        (21, 0, StockStatus.SLOW),
        (21, 1, StockStatus.HEALTHY),
        (500, 0, StockStatus.SLOW),
        (500, 40, StockStatus.HEALTHY),
    ])
    def test_first_match_wins(self, stock, sales, expected):
        assert classify_stock(stock, sales) is expected

    def test_tomatoes_out_regardless_of_history(self):
        for sales in (0, 1, 50, 1000):
            assert classify_stock(0, sales) is StockStatus.OUT

    def test_total_over_grid(self):
        for stock in [0, 0.5, 4, 5, 19, 20, 20.5, 100]:
            for sales in [0, 1, 7]:
                assert classify_stock(stock, sales) in set(StockStatus)

    def test_custom_policy(self):
        policy = StockPolicy(low_threshold=10, slow_threshold=50)
        assert classify_stock(8, 2, policy) is StockStatus.LOW
        assert classify_stock(40, 0, policy) is StockStatus.HEALTHY
        assert classify_stock(60, 0, policy) is StockStatus.SLOW

    def test_policy_from_config(self):
        policy = StockPolicy.from_config({"STOCK_LOW_THRESHOLD": 3, "SALES_WINDOW_DAYS": 7})
        assert policy.low_threshold == 3
        assert policy.slow_threshold == 20
        assert policy.sales_window_days == 7

    def test_recommendations(self):
        assert "reorder" in recommendation_for(StockStatus.OUT, "Rice", 0)
        assert "only 3" in recommendation_for(StockStatus.LOW, "Rice", 3)
        assert "promotion" in recommendation_for(StockStatus.SLOW, "Rice", 80)
        assert "healthy" in recommendation_for(StockStatus.HEALTHY, "Rice", 10)


class TestInventoryOverview:
    def test_overview_rows_and_totals(self, db_session, business, receive, sell):
        receive("Rice", 50, total_cost=500)
        receive("Rice", 50, total_cost=600)
        receive("Sugar", 3, total_cost=30)
        receive("Flour", 40, total_cost=80)
        sell("Rice", 70, amount=1050)

        overview = get_inventory_overview(business.id)
        rows = {row["product_name"]: row for row in overview["items"]}

        rice = rows["Rice"]
        assert rice["current_stock"] == 30
        assert rice["sales_count_30d"] == 1
        assert rice["avg_cost_price"] == pytest.approx(11.0)
        assert rice["avg_selling_price"] == pytest.approx(15.0)
        assert rice["total_value"] == pytest.approx(330.0)
        assert rice["status"] == "healthy"

        assert rows["Sugar"]["status"] == "low"
        assert rows["Flour"]["status"] == "slow"

        metrics = overview["stock_metrics"]
        assert metrics["total_items"] == 73
        assert metrics["low_stock_items"] == 1
        assert metrics["out_of_stock_items"] == 0
        assert metrics["total_revenue"] == pytest.approx(1050)

    def test_old_and_reversed_sales_are_not_counted(self, db_session, business, receive, sell):
        from stockflow.services.sales_service import reverse_sale

        receive("Millet", 60, total_cost=120)
        sell("Millet", 5, amount=50, sold_at=utcnow() - timedelta(days=45))
        recent = sell("Millet", 5, amount=50)
        reverse_sale(business_id=business.id, sale_id=recent.id)

        overview = get_inventory_overview(business.id)
        (row,) = overview["items"]

        assert row["sales_count_30d"] == 0
        assert row["status"] == "slow"
        assert overview["stock_metrics"]["total_revenue"] == 0

    def test_out_of_stock_counted(self, db_session, business, receive, sell):
        receive("Tomatoes", 10, total_cost=40)
        sell("Tomatoes", 10, amount=80)

        overview = get_inventory_overview(business.id)

        assert overview["items"][0]["status"] == "out"
        assert overview["stock_metrics"]["out_of_stock_items"] == 1

    def test_business_isolation(self, db_session, business, other_business, receive):
        receive("Rice", 10, total_cost=100)

        overview = get_inventory_overview(other_business.id)

        assert overview["items"] == []
        assert overview["stock_metrics"]["total_value"] == 0
