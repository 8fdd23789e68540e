"""
Conversion transactor tests: five-step atomic commit, idempotency, loss policy.
"""

import json

import pytest
from sqlalchemy.exc import SQLAlchemyError

from stockflow.models import Expense, InventoryMovement, InventoryReceipt, Product, StockConversion
from stockflow.services import conversion_service
from stockflow.services.conversion_service import (
    PartialWriteError,
    cancel_conversion,
    confirm_conversion,
    convert_stock,
    list_conversion_history,
    propose_conversion,
)
from stockflow.services.movement_service import record_loss
from stockflow.validation import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def palm_fruit(db_session, business, receive):
    """20 units of Palm Fruit at an average cost of 5 per unit."""
    receive("Palm Fruit", 10, total_cost=40)
    receipt = receive("Palm Fruit", 10, total_cost=60)
    return db_session.get(Product, receipt.product_id)


@pytest.fixture
def loss_policy(app):
    original = app.config["CONVERSION_LOSS_POLICY"]

    def _set(value):
        app.config["CONVERSION_LOSS_POLICY"] = value

    yield _set
    app.config["CONVERSION_LOSS_POLICY"] = original


def _convert(business, source, quantity=10, produced=8, **kwargs):
    kwargs.setdefault("record_loss", True)
    return convert_stock(
        business_id=business.id,
        source_product_id=source.id,
        destination_product_name="Palm Oil",
        source_quantity=quantity,
        destination_quantity=produced,
        **kwargs,
    )


class TestConvertStock:
    def test_palm_fruit_to_palm_oil(self, db_session, business, palm_fruit):
        conversion = _convert(business, palm_fruit, unit="litres", selling_price=30)

        assert conversion.status == "COMMITTED"
        assert conversion.source_unit_cost == pytest.approx(5.0)
        assert conversion.cost_impact == pytest.approx(50.0)

        assert db_session.get(Product, palm_fruit.id).current_stock == 10
        oil = db_session.get(Product, conversion.destination_product_id)
        assert oil.name == "Palm Oil"
        assert oil.current_stock == 8
        assert oil.selling_price == 30
        assert oil.unit == "litres"

        expense = db_session.query(Expense).filter_by(conversion_id=conversion.id).one()
        assert expense.amount == pytest.approx(50.0)
        assert expense.category == "Stock Conversion"
        assert conversion.expense_id == expense.id

    def test_writes_movement_with_lineage(self, db_session, business, palm_fruit):
        conversion = _convert(business, palm_fruit, unit="litres")

        movement = db_session.query(InventoryMovement).filter_by(conversion_id=conversion.id).one()
        assert movement.product_id == palm_fruit.id
        assert movement.movement_type == "conversion"
        assert movement.quantity == 10
        assert json.loads(movement.notes) == {
            "originalProduct": "Palm Fruit",
            "convertedProduct": "Palm Oil",
            "originalQuantity": 10,
            "newQuantity": 8,
            "unit": "litres",
        }

        history = list_conversion_history(business.id)
        assert history[0]["conversion_id"] == conversion.id

    def test_destination_receipt_carries_given_unit_cost(self, db_session, business, palm_fruit):
        conversion = _convert(business, palm_fruit, unit_cost=7)

        receipt = db_session.query(InventoryReceipt).filter_by(conversion_id=conversion.id).one()
        assert receipt.product_id == conversion.destination_product_id
        assert receipt.quantity_received == 8
        assert receipt.unit_cost == 7
        assert receipt.total_cost == 56

    def test_destination_receipt_defaults_to_zero_cost(self, db_session, business, palm_fruit):
        conversion = _convert(business, palm_fruit)
        receipt = db_session.query(InventoryReceipt).filter_by(conversion_id=conversion.id).one()
        assert receipt.unit_cost == 0
        assert receipt.total_cost == 0

    def test_existing_destination_is_topped_up(self, db_session, business, palm_fruit, receive):
        existing = receive("palm oil", 3, total_cost=60)

        conversion = _convert(business, palm_fruit)

        assert conversion.destination_product_id == existing.product_id
        assert db_session.get(Product, existing.product_id).current_stock == 11

    def test_no_expense_without_loss(self, db_session, business, palm_fruit):
        conversion = _convert(business, palm_fruit, record_loss=False)
        assert conversion.expense_id is None
        assert db_session.query(Expense).count() == 0

    def test_no_expense_when_source_has_no_cost(self, db_session, business, receive):
        receipt = receive("Cassava", 10)
        cassava = db_session.get(Product, receipt.product_id)

        conversion = convert_stock(
            business_id=business.id,
            source_product_id=cassava.id,
            destination_product_name="Gari",
            source_quantity=10,
            destination_quantity=4,
            record_loss=True,
        )

        assert conversion.cost_impact == 0
        assert db_session.query(Expense).count() == 0


class TestRejectedConversions:
    def test_more_than_stock_mutates_nothing(self, db_session, business, palm_fruit):
        with pytest.raises(ValidationError):
            _convert(business, palm_fruit, quantity=21)

        assert db_session.get(Product, palm_fruit.id).current_stock == 20
        assert db_session.query(Product).filter_by(name_key="palm oil").count() == 0
        assert db_session.query(StockConversion).count() == 0
        assert db_session.query(InventoryMovement).count() == 0
        assert db_session.query(Expense).count() == 0

    def test_stock_drop_after_proposal_mutates_nothing(self, db_session, business, palm_fruit):
        proposal = propose_conversion(
            business_id=business.id,
            source_product_id=palm_fruit.id,
            destination_product_name="Palm Oil",
            source_quantity=15,
            destination_quantity=12,
        )
        record_loss(business_id=business.id, movement_type="spoiled", quantity=10, product_id=palm_fruit.id)

        with pytest.raises(ValidationError):
            confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)

        assert db_session.get(Product, palm_fruit.id).current_stock == 10
        assert db_session.get(StockConversion, proposal.id).status == "PROPOSED"
        assert db_session.query(Product).filter_by(name_key="palm oil").count() == 0
        assert db_session.query(InventoryReceipt).filter(InventoryReceipt.conversion_id.isnot(None)).count() == 0

    def test_same_product(self, db_session, business, palm_fruit):
        with pytest.raises(ValidationError):
            convert_stock(
                business_id=business.id,
                source_product_id=palm_fruit.id,
                destination_product_name="  palm FRUIT",
                source_quantity=1,
                destination_quantity=1,
                record_loss=False,
            )

    @pytest.mark.parametrize("quantity,produced", [(0, 5), (-1, 5), (5, 0), (5, -2)])
    def test_non_positive_quantities(self, db_session, business, palm_fruit, quantity, produced):
        with pytest.raises(ValidationError):
            _convert(business, palm_fruit, quantity=quantity, produced=produced)

    def test_unknown_source(self, db_session, business):
        with pytest.raises(NotFoundError):
            convert_stock(
                business_id=business.id,
                source_product_id=9999,
                destination_product_name="Palm Oil",
                source_quantity=1,
                destination_quantity=1,
                record_loss=False,
            )


class TestProposeConfirm:
    def _propose(self, business, source, key=None, quantity=10):
        return propose_conversion(
            business_id=business.id,
            source_product_id=source.id,
            destination_product_name="Palm Oil",
            source_quantity=quantity,
            destination_quantity=8,
            conversion_key=key,
        )

    def test_proposal_reports_cost_impact_without_writing_stock(self, db_session, business, palm_fruit):
        proposal = self._propose(business, palm_fruit)

        assert proposal.status == "PROPOSED"
        assert proposal.cost_impact == pytest.approx(50.0)
        assert db_session.get(Product, palm_fruit.id).current_stock == 20

    def test_confirm_twice_applies_once(self, db_session, business, palm_fruit):
        proposal = self._propose(business, palm_fruit)

        first = confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)
        second = confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)

        assert first.id == second.id
        assert db_session.get(Product, palm_fruit.id).current_stock == 10
        assert db_session.get(Product, first.destination_product_id).current_stock == 8
        assert db_session.query(Expense).count() == 1
        assert db_session.query(InventoryMovement).count() == 1

    def test_key_reuse_with_same_inputs_is_idempotent(self, db_session, business, palm_fruit):
        first = self._propose(business, palm_fruit, key="batch-7")
        again = self._propose(business, palm_fruit, key="batch-7")
        assert first.id == again.id

    def test_retry_of_committed_key_does_not_reapply(self, db_session, business, palm_fruit):
        _convert(business, palm_fruit, conversion_key="batch-7")
        _convert(business, palm_fruit, conversion_key="batch-7")

        assert db_session.get(Product, palm_fruit.id).current_stock == 10
        assert db_session.query(StockConversion).count() == 1

    def test_key_reuse_with_different_inputs_conflicts(self, db_session, business, palm_fruit):
        self._propose(business, palm_fruit, key="batch-7")
        with pytest.raises(ConflictError):
            self._propose(business, palm_fruit, key="batch-7", quantity=5)

    def test_cost_is_reread_at_confirmation(self, db_session, business, palm_fruit, receive):
        proposal = self._propose(business, palm_fruit)
        receive("Palm Fruit", 20, total_cost=200)

        conversion = confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)

        # (100 + 200) / 40
        assert conversion.source_unit_cost == pytest.approx(7.5)
        assert conversion.cost_impact == pytest.approx(75.0)

    def test_cancel(self, db_session, business, palm_fruit):
        proposal = self._propose(business, palm_fruit)

        cancelled = cancel_conversion(business_id=business.id, conversion_id=proposal.id)
        assert cancelled.status == "CANCELLED"

        with pytest.raises(ConflictError):
            confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)
        assert db_session.get(Product, palm_fruit.id).current_stock == 20

    def test_cannot_cancel_committed(self, db_session, business, palm_fruit):
        conversion = _convert(business, palm_fruit)
        with pytest.raises(ConflictError):
            cancel_conversion(business_id=business.id, conversion_id=conversion.id)

    def test_conversion_of_other_business_not_found(self, db_session, business, other_business, palm_fruit):
        proposal = self._propose(business, palm_fruit)
        with pytest.raises(NotFoundError):
            confirm_conversion(business_id=other_business.id, conversion_id=proposal.id, record_loss=True)


class TestLossPolicy:
    def test_ask_requires_decision(self, db_session, business, palm_fruit, loss_policy):
        loss_policy("ask")
        with pytest.raises(ValidationError):
            _convert(business, palm_fruit, record_loss=None)
        assert db_session.get(Product, palm_fruit.id).current_stock == 20
        assert db_session.query(StockConversion).count() == 0

    def test_always_records(self, db_session, business, palm_fruit, loss_policy):
        loss_policy("always")
        conversion = _convert(business, palm_fruit, record_loss=None)
        assert conversion.record_loss is True
        assert db_session.query(Expense).count() == 1

    def test_never_records(self, db_session, business, palm_fruit, loss_policy):
        loss_policy("never")
        conversion = _convert(business, palm_fruit, record_loss=True)
        assert conversion.record_loss is False
        assert db_session.query(Expense).count() == 0


class TestPartialWrite:
    def test_failed_step_rolls_back_everything(self, db_session, business, palm_fruit, monkeypatch):
        def _broken_receipt(**kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(conversion_service, "_append_receipt", _broken_receipt)
        proposal = propose_conversion(
            business_id=business.id,
            source_product_id=palm_fruit.id,
            destination_product_name="Palm Oil",
            source_quantity=10,
            destination_quantity=8,
        )

        with pytest.raises(PartialWriteError) as excinfo:
            confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)

        assert excinfo.value.conversion_id == proposal.id
        assert excinfo.value.step == "append_receipt"
        assert db_session.get(Product, palm_fruit.id).current_stock == 20
        assert db_session.query(InventoryMovement).count() == 0
        assert db_session.query(Product).filter_by(name_key="palm oil").count() == 0
        assert db_session.get(StockConversion, proposal.id).status == "PROPOSED"

        monkeypatch.undo()
        conversion = confirm_conversion(business_id=business.id, conversion_id=proposal.id, record_loss=True)
        assert conversion.status == "COMMITTED"
        assert db_session.get(Product, palm_fruit.id).current_stock == 10
