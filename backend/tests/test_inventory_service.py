"""Inventory transaction log: single and bulk entries, corrections, reports."""

from datetime import timedelta

import pytest
from sqlalchemy import update

from shopcore.errors import InsufficientStock, ProductNotFound, TransactionNotFound, ValidationError
from shopcore.extensions import db
from shopcore.models import InventoryTransaction, Product
from shopcore.services import inventory_service
from shopcore.time_utils import utcnow


def _stock(product_id):
    return db.session.query(Product.stock_qty).filter_by(id=product_id).scalar()


def _ledger_count():
    return db.session.query(InventoryTransaction).count()


def test_purchase_increases_stock_and_records_entry(make_product, admin):
    product = make_product(stock=4)

    tx = inventory_service.create_inventory_transaction(
        {
            "product_id": product.id,
            "type": "purchase",
            "quantity": 6,
            "reason": "Weekly restock",
            "cost_cents": 4500,
            "supplier": "ACME",
            "batch_number": "B-77",
            "expiration_date": "2027-01-31",
        },
        actor_user_id=admin.user_id,
    )

    assert _stock(product.id) == 10
    assert (tx.previous_qty, tx.new_qty, tx.quantity) == (4, 10, 6)
    assert tx.created_by_user_id == admin.user_id
    assert tx.to_dict()["expiration_date"] == "2027-01-31"


@pytest.mark.parametrize("tx_type,quantity", [
    ("sale", 1),
    ("damage", 2),
    ("expired", 3),
    ("purchase", -1),
    ("return", -2),
    ("adjustment", 0),
])
def test_sign_must_match_type(make_product, tx_type, quantity):
    product = make_product(stock=10)

    with pytest.raises(ValidationError):
        inventory_service.create_inventory_transaction(
            {"product_id": product.id, "type": tx_type, "quantity": quantity, "reason": "x"}
        )

    assert _stock(product.id) == 10


@pytest.mark.parametrize("quantity,expected", [(3, 13), (-4, 6)])
def test_adjustment_and_transfer_accept_either_sign(make_product, quantity, expected):
    product = make_product(stock=10)

    inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "adjustment", "quantity": quantity, "reason": "count"}
    )

    assert _stock(product.id) == expected


@pytest.mark.parametrize("payload", [
    {"type": "purchase", "quantity": 1, "reason": "no product"},
    {"product_id": 1, "type": "gift", "quantity": 1, "reason": "bad type"},
    {"product_id": 1, "type": "purchase", "reason": "no quantity"},
    {"product_id": 1, "type": "purchase", "quantity": 1},
    {"product_id": 1, "type": "purchase", "quantity": 1, "reason": "x" * 501},
    {"product_id": 1, "type": "purchase", "quantity": 1, "reason": "neg cost", "cost_cents": -5},
])
def test_invalid_entries_are_rejected(db_session, payload):
    with pytest.raises(ValidationError):
        inventory_service.create_inventory_transaction(payload)


def test_decrease_below_zero_is_rejected(make_product):
    product = make_product(stock=2)
    before = _ledger_count()

    with pytest.raises(InsufficientStock) as exc_info:
        inventory_service.create_inventory_transaction(
            {"product_id": product.id, "type": "damage", "quantity": -3, "reason": "flood"}
        )

    assert exc_info.value.available == 2
    assert _stock(product.id) == 2
    assert _ledger_count() == before


def test_unknown_product(db_session):
    with pytest.raises(ProductNotFound):
        inventory_service.create_inventory_transaction(
            {"product_id": 55555, "type": "purchase", "quantity": 1, "reason": "x"}
        )


def test_bulk_with_one_invalid_entry_persists_nothing(make_product):
    a = make_product(stock=5)
    b = make_product(stock=5)
    c = make_product(stock=5)
    before = _ledger_count()

    with pytest.raises(ValidationError) as exc_info:
        inventory_service.bulk_create_transactions(
            [
                {"product_id": a.id, "quantity": 1},
                {"product_id": b.id, "quantity": 2},
                {"product_id": c.id, "quantity": 3},
                {"product_id": a.id, "quantity": -1},
            ],
            "purchase",
            "Supplier delivery",
        )

    assert exc_info.value.details["errors"][0]["index"] == 3
    assert _ledger_count() == before
    assert [_stock(p.id) for p in (a, b, c)] == [5, 5, 5]


def test_bulk_rejects_accumulated_negative_stock(make_product):
    a = make_product(stock=5)
    b = make_product(stock=5)
    before = _ledger_count()

    with pytest.raises(ValidationError) as exc_info:
        inventory_service.bulk_create_transactions(
            [
                {"product_id": a.id, "quantity": -3},
                {"product_id": b.id, "quantity": -1},
                {"product_id": a.id, "quantity": -3},
            ],
            "damage",
            "Warehouse leak",
        )

    assert exc_info.value.details["errors"] == [
        {"index": 2, "error": f"entry would make stock negative for product {a.id}"},
    ]
    assert _ledger_count() == before
    assert (_stock(a.id), _stock(b.id)) == (5, 5)


def test_bulk_rejects_unknown_product_before_writing(make_product):
    a = make_product(stock=5)

    with pytest.raises(ValidationError):
        inventory_service.bulk_create_transactions(
            [{"product_id": a.id, "quantity": 2}, {"product_id": 99999, "quantity": 1}],
            "purchase",
            "Delivery",
        )

    assert _stock(a.id) == 5


def test_bulk_applies_all_entries(make_product, admin):
    a = make_product(stock=1)
    b = make_product(stock=0)

    created = inventory_service.bulk_create_transactions(
        [{"product_id": a.id, "quantity": 4, "cost_cents": 100}, {"product_id": b.id, "quantity": 7}],
        "purchase",
        "Delivery #12",
        supplier="ACME",
        actor_user_id=admin.user_id,
    )

    assert len(created) == 2
    assert {tx.reason for tx in created} == {"Delivery #12"}
    assert {tx.supplier for tx in created} == {"ACME"}
    assert (_stock(a.id), _stock(b.id)) == (5, 7)


@pytest.mark.parametrize("entries,tx_type,reason", [
    ([], "purchase", "x"),
    ("nope", "purchase", "x"),
    ([{"product_id": 1, "quantity": 1}], "gift", "x"),
    ([{"product_id": 1, "quantity": 1}], "purchase", ""),
])
def test_bulk_request_validation(db_session, entries, tx_type, reason):
    with pytest.raises(ValidationError):
        inventory_service.bulk_create_transactions(entries, tx_type, reason)


def test_metadata_update_is_limited_to_reason_and_notes(make_product):
    product = make_product(stock=3)
    tx = inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "purchase", "quantity": 2, "reason": "typo"}
    )

    updated = inventory_service.update_transaction_metadata(tx.id, {"reason": "Restock", "notes": "pallet 4"})
    assert (updated.reason, updated.notes) == ("Restock", "pallet 4")

    with pytest.raises(ValidationError):
        inventory_service.update_transaction_metadata(tx.id, {"quantity": 200})
    with pytest.raises(ValidationError):
        inventory_service.update_transaction_metadata(tx.id, {"reason": "   "})
    with pytest.raises(TransactionNotFound):
        inventory_service.update_transaction_metadata(123456, {"notes": "x"})

    assert inventory_service.get_transaction(tx.id).quantity == 2
    assert _stock(product.id) == 5


def test_reversal_undoes_an_entry_once(make_product, admin):
    product = make_product(stock=3)
    tx = inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "purchase", "quantity": 10, "reason": "wrong product"}
    )

    reversal = inventory_service.reverse_transaction(tx.id, "entered on wrong SKU", actor_user_id=admin.user_id)

    assert reversal.type == "adjustment"
    assert reversal.quantity == -10
    assert reversal.reverses_transaction_id == tx.id
    assert _stock(product.id) == 3

    with pytest.raises(ValidationError):
        inventory_service.reverse_transaction(tx.id, "again")
    with pytest.raises(ValidationError):
        inventory_service.reverse_transaction(reversal.id, "undo the undo")
    assert _stock(product.id) == 3


def test_reversal_cannot_drive_stock_negative(make_product):
    product = make_product(stock=0)
    tx = inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "purchase", "quantity": 5, "reason": "delivery"}
    )
    inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "damage", "quantity": -4, "reason": "crushed"}
    )

    with pytest.raises(InsufficientStock):
        inventory_service.reverse_transaction(tx.id, "delivery never happened")

    assert _stock(product.id) == 1


def test_product_history_is_paginated_and_filtered(make_product):
    product = make_product(stock=1)
    for i in range(4):
        inventory_service.create_inventory_transaction(
            {"product_id": product.id, "type": "purchase", "quantity": 1, "reason": f"r{i}"}
        )
    inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "damage", "quantity": -1, "reason": "dent"}
    )

    page = inventory_service.get_product_history(product.id, page=1, per_page=2)
    assert page["pagination"]["total"] == 6
    assert page["pagination"]["total_pages"] == 3
    assert page["pagination"]["has_next"] is True
    assert page["items"][0]["reason"] == "dent"
    assert page["product"]["current_stock"] == 4

    damage = inventory_service.get_product_history(product.id, tx_type="damage")
    assert [row["reason"] for row in damage["items"]] == ["dent"]

    with pytest.raises(ProductNotFound):
        inventory_service.get_product_history(99999)
    with pytest.raises(ValidationError):
        inventory_service.get_product_history(product.id, date_from="yesterday")


def test_list_transactions_filters(make_product):
    a = make_product(stock=2)
    b = make_product(stock=3)
    inventory_service.create_inventory_transaction(
        {"product_id": b.id, "type": "return", "quantity": 1, "reason": "rma", "reference": "RMA-1"}
    )

    assert inventory_service.list_transactions(product_id=a.id)["pagination"]["total"] == 1
    assert inventory_service.list_transactions(tx_type="return")["items"][0]["product_id"] == b.id
    assert inventory_service.list_transactions(reference="RMA-1")["count"] == 1


def test_report_low_and_out_of_stock(make_product):
    out = make_product(stock=0, price_cents=100)
    low = make_product(stock=4, price_cents=200)
    normal = make_product(stock=50, price_cents=300)
    make_product(stock=0, is_active=False)

    report = inventory_service.get_inventory_report(low_stock_threshold=10)

    statuses = {row["id"]: row["stock_status"] for row in report["products"]}
    assert statuses == {out.id: "out", low.id: "low", normal.id: "normal"}
    assert report["summary"]["total_products"] == 3
    assert report["summary"]["out_of_stock_count"] == 1
    assert report["summary"]["low_stock_count"] == 1
    assert report["summary"]["total_value_cents"] == 4 * 200 + 50 * 300

    normal_stats = next(r for r in report["products"] if r["id"] == normal.id)["stats"]
    assert normal_stats["by_type"]["purchase"] == {"count": 1, "quantity": 50}

    assert [p["id"] for p in inventory_service.get_low_stock_products(10)] == [low.id]
    assert [p["id"] for p in inventory_service.get_out_of_stock_products()] == [out.id]

    with_inactive = inventory_service.get_inventory_report(include_inactive=True)
    assert with_inactive["summary"]["total_products"] == 4


def test_reconcile_detects_writes_that_bypass_the_ledger(make_product):
    product = make_product(stock=8)
    assert inventory_service.reconcile_inventory()["is_consistent"] is True

    db.session.execute(update(Product).where(Product.id == product.id).values(stock_qty=11))
    db.session.commit()

    result = inventory_service.reconcile_inventory()
    assert result["is_consistent"] is False
    assert result["drift"] == [{
        "product_id": product.id,
        "sku": product.sku,
        "stock_qty": 11,
        "ledger_qty": 8,
        "difference": 3,
    }]


@pytest.mark.parametrize("quantity", ["--5", "-²", "5.0", "", " ", [5]])
def test_malformed_quantity_is_a_validation_error(make_product, quantity):
    product = make_product(stock=5)

    with pytest.raises(ValidationError):
        inventory_service.create_inventory_transaction(
            {"product_id": product.id, "type": "adjustment", "quantity": quantity, "reason": "count"}
        )

    with pytest.raises(ValidationError) as exc_info:
        inventory_service.bulk_create_transactions(
            [{"product_id": product.id, "quantity": 1}, {"product_id": product.id, "quantity": quantity}],
            "adjustment",
            "count",
        )
    assert exc_info.value.details["errors"][0]["index"] == 1
    assert _stock(product.id) == 5


def test_numeric_string_quantity_is_accepted(make_product):
    product = make_product(stock=5)

    tx = inventory_service.create_inventory_transaction(
        {"product_id": product.id, "type": "adjustment", "quantity": " -2 ", "reason": "count"}
    )

    assert tx.quantity == -2
    assert _stock(product.id) == 3


def _record(product_id, tx_type, quantity, reason="movement"):
    return inventory_service.create_inventory_transaction(
        {"product_id": product_id, "type": tx_type, "quantity": quantity, "reason": reason}
    )


def test_general_stats(make_product):
    a = make_product(stock=20, price_cents=100)
    make_product(stock=0, price_cents=500)
    make_product(stock=4, price_cents=200, is_active=False)
    _record(a.id, "sale", -2)
    _record(a.id, "sale", -3)

    stats = inventory_service.get_general_stats(low_stock_threshold=10)

    assert stats["transactions"]["sale"] == {"count": 2, "quantity": -5}
    assert stats["transactions"]["purchase"] == {"count": 2, "quantity": 24}
    assert stats["products"]["total_products"] == 3
    assert stats["products"]["active_products"] == 2
    assert stats["products"]["total_stock_value_cents"] == 15 * 100 + 4 * 200
    assert stats["products"]["out_of_stock_products"] == 1
    assert stats["products"]["low_stock_products"] == 1

    future = inventory_service.get_general_stats(date_from="2999-01-01")
    assert future["transactions"] == {}

    with pytest.raises(ValidationError):
        inventory_service.get_general_stats(date_to="soon")


def test_product_stats_and_daily_trend(make_product):
    product = make_product(stock=10)
    _record(product.id, "sale", -1)
    _record(product.id, "sale", -2)
    _record(product.id, "damage", -1)

    stats = inventory_service.get_product_stats(product.id, days=7)
    assert stats["total_transactions"] == 4
    assert stats["by_type"]["sale"] == {"count": 2, "quantity": -3}

    trend = inventory_service.get_trend_analysis(product.id, days=7)
    today = utcnow().date().isoformat()
    assert list(trend["trends"]) == [today]
    assert trend["trends"][today]["sale"] == {"quantity": -3, "transactions": 2}
    assert trend["trends"][today]["damage"] == {"quantity": -1, "transactions": 1}

    with pytest.raises(ProductNotFound):
        inventory_service.get_trend_analysis(99999)
    with pytest.raises(ValidationError):
        inventory_service.get_product_stats(product.id, days=0)


def test_restock_prediction(make_product):
    product = make_product(stock=20)
    assert inventory_service.predict_restock(product.id, days=10) is None

    for quantity in (-1, -2, -3):
        _record(product.id, "sale", quantity)

    prediction = inventory_service.predict_restock(product.id, days=10)

    assert prediction["current_stock"] == 14
    assert prediction["daily_average_sales"] == 0.6
    assert prediction["estimated_days_left"] == 23
    assert prediction["confidence"] == "low"
    assert prediction["predicted_restock_date"] == (utcnow().date() + timedelta(days=23)).isoformat()


def test_restock_confidence_grows_with_sale_count(make_product):
    product = make_product(stock=100)
    for _ in range(6):
        _record(product.id, "sale", -1)
    assert inventory_service.predict_restock(product.id)["confidence"] == "medium"

    for _ in range(5):
        _record(product.id, "sale", -1)
    assert inventory_service.predict_restock(product.id)["confidence"] == "high"


def test_analytics_bundle(make_product):
    product = make_product(stock=5)
    _record(product.id, "sale", -1)

    general_only = inventory_service.get_inventory_analytics()
    assert set(general_only) == {"general"}

    bundle = inventory_service.get_inventory_analytics(product_id=product.id, days=30)
    assert bundle["product"]["stats"]["by_type"]["sale"]["count"] == 1
    assert bundle["product"]["restock_prediction"]["current_stock"] == 4
