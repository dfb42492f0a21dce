"""Unit tests for the ledger engine and catalog operations."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest

from inventory_ledger import core_logic, data_manager
from inventory_ledger.constants import RemovalReason, TransactionType


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_starts_empty(runtime_context):
    assert runtime_context.products == []
    assert runtime_context.transactions == []
    assert runtime_context.shop_settings.company_name == "Test Shop"


def test_ensure_schema_version_rejects_mismatch(runtime_context):
    """Schema mismatches should surface a RuntimeError with clear messaging."""

    bad_settings = replace(runtime_context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, store=runtime_context.store)
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_refresh_context_reads_back_persisted_state(runtime_context, product_factory):
    product = product_factory()
    sale = core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 2, notes="counter"))

    fresh = core_logic.refresh_context(runtime_context)

    assert fresh is not runtime_context
    assert fresh.products == runtime_context.products
    assert fresh.transactions == [sale]


def test_generate_id_is_unique_within_same_instant():
    moment = datetime(2025, 5, 1, 12, 0, tzinfo=UTC)
    ids = {core_logic.generate_id(when=moment) for _ in range(500)}

    assert len(ids) == 500
    assert all(identifier.startswith("T20250501120000000000-") for identifier in ids)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def test_add_product_assigns_id_and_timestamps(runtime_context, set_fixed_datetime):
    moment = set_fixed_datetime(datetime(2025, 6, 1, 9, 30, tzinfo=UTC))

    product = core_logic.add_product(
        runtime_context,
        name="  Tea  ",
        category="Drinks",
        supplier_name="Leaf Co",
        buying_price="1.20",
        selling_price=Decimal("2.00"),
        stock=5,
    )

    assert product.product_id.startswith("P20250601093000")
    assert product.name == "Tea"
    assert product.buying_price == Decimal("1.20")
    assert product.created_at == product.updated_at == moment
    assert runtime_context.products == [product]


def test_add_product_keeps_catalog_order_and_allows_duplicate_names(runtime_context, product_factory):
    first = product_factory(name="Soap")
    second = product_factory(name="Soap")

    assert [p.product_id for p in core_logic.list_products(runtime_context)] == [first.product_id, second.product_id]
    assert first.product_id != second.product_id


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"category": ""},
        {"supplier_name": None},
        {"buying_price": "-1"},
        {"selling_price": "abc"},
        {"stock": -1},
        {"stock": True},
        {"stock": 2.5},
    ],
)
def test_add_product_rejects_invalid_values(runtime_context, overrides):
    values = {
        "name": "Tea",
        "category": "Drinks",
        "supplier_name": "Leaf Co",
        "buying_price": "1",
        "selling_price": "2",
        "stock": 1,
    }
    values.update(overrides)

    with pytest.raises(core_logic.ValidationError):
        core_logic.add_product(runtime_context, **values)
    assert runtime_context.products == []


def test_update_product_merges_fields_and_refreshes_timestamp(runtime_context, product_factory, set_fixed_datetime):
    set_fixed_datetime(datetime(2025, 1, 1, tzinfo=UTC))
    product = product_factory()
    later = set_fixed_datetime(datetime(2025, 2, 1, tzinfo=UTC))

    updated = core_logic.update_product(runtime_context, product.product_id, selling_price="18.50", name="Gadget")

    assert updated.selling_price == Decimal("18.50")
    assert updated.name == "Gadget"
    assert updated.buying_price == product.buying_price
    assert updated.created_at == product.created_at
    assert updated.updated_at == later
    assert core_logic.get_product(runtime_context, product.product_id) == updated


def test_update_product_unknown_id_raises(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.update_product(runtime_context, "nope", name="X")


@pytest.mark.parametrize("field_name", ["product_id", "created_at", "colour"])
def test_update_product_rejects_non_editable_fields(runtime_context, product_factory, field_name):
    product = product_factory()
    with pytest.raises(core_logic.ValidationError):
        core_logic.update_product(runtime_context, product.product_id, **{field_name: "x"})
    assert core_logic.get_product(runtime_context, product.product_id) == product


def test_delete_product_removes_record(runtime_context, product_factory):
    product = product_factory()

    assert core_logic.delete_product(runtime_context, product.product_id) is True
    assert runtime_context.products == []
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_product(runtime_context, product.product_id)


def test_delete_product_unknown_id_is_noop(runtime_context, product_factory):
    product = product_factory()

    assert core_logic.delete_product(runtime_context, "missing") is False
    assert runtime_context.products == [product]


def test_delete_product_keeps_transactions(runtime_context, product_factory):
    product = product_factory()
    sale = core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 1))

    core_logic.delete_product(runtime_context, product.product_id)

    assert core_logic.list_transactions(runtime_context) == [sale]
    assert core_logic.refresh_context(runtime_context).transactions == [sale]


# ---------------------------------------------------------------------------
# Ledger engine
# ---------------------------------------------------------------------------


def test_record_sale_computes_total_and_profit(runtime_context, product_factory, set_fixed_datetime):
    product = product_factory(stock=10, buying_price="10", selling_price="15")
    moment = set_fixed_datetime(datetime(2025, 7, 15, 10, tzinfo=UTC))

    sale = core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 3, notes="cash"))

    assert sale.transaction_type is TransactionType.SALE
    assert sale.price_per_unit == Decimal("15")
    assert sale.total_amount == Decimal("45")
    assert sale.profit == Decimal("15")
    assert sale.product_name == product.name
    assert sale.removal_reason is None
    assert sale.notes == "cash"
    assert sale.date == moment
    stored = core_logic.get_product(runtime_context, product.product_id)
    assert stored.stock == 7
    assert stored.updated_at == moment


def test_record_sale_insufficient_stock_leaves_state_unchanged(runtime_context, product_factory):
    product = product_factory(stock=2)
    before_products = core_logic.list_products(runtime_context)
    before_blob = runtime_context.store.get("products")

    with pytest.raises(core_logic.InsufficientStockError):
        core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 3))

    assert core_logic.list_products(runtime_context) == before_products
    assert core_logic.list_transactions(runtime_context) == []
    assert runtime_context.store.get("products") == before_blob


def test_record_sale_of_entire_stock_is_allowed(runtime_context, product_factory):
    product = product_factory(stock=4)
    core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 4))
    assert core_logic.get_product(runtime_context, product.product_id).stock == 0


@pytest.mark.parametrize(
    "quantity",
    [0, -2, 1.5, True, "3", Decimal("2.5"), Decimal("Infinity"), Decimal("-Infinity"), Decimal("NaN"), Decimal("sNaN")],
)
def test_record_sale_rejects_invalid_quantity(runtime_context, product_factory, quantity):
    product = product_factory()

    with pytest.raises(core_logic.ValidationError):
        core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, quantity))
    assert core_logic.get_product(runtime_context, product.product_id).stock == 20
    assert runtime_context.transactions == []


def test_record_sale_accepts_integral_decimal_quantity(runtime_context, product_factory):
    product = product_factory()
    sale = core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, Decimal("2")))
    assert sale.quantity == 2


def test_record_sale_unknown_product_raises(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.record_sale(runtime_context, core_logic.SaleCommand("ghost", 1))


def test_record_purchase_increments_stock_at_buying_price(runtime_context, product_factory):
    product = product_factory(stock=0, buying_price="10")

    purchase = core_logic.record_purchase(runtime_context, core_logic.PurchaseCommand(product.product_id, 10))

    assert purchase.transaction_type is TransactionType.PURCHASE
    assert purchase.price_per_unit == Decimal("10")
    assert purchase.total_amount == Decimal("100")
    assert purchase.profit is None
    assert core_logic.get_product(runtime_context, product.product_id).stock == 10


def test_record_purchase_unknown_product_raises(runtime_context):
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.record_purchase(runtime_context, core_logic.PurchaseCommand("ghost", 1))


def test_record_removal_records_reason_at_cost(runtime_context, product_factory):
    product = product_factory(stock=5, buying_price="10")

    removal = core_logic.record_removal(
        runtime_context,
        core_logic.RemovalCommand(product.product_id, 2, "damaged", notes="dropped"),
    )

    assert removal.transaction_type is TransactionType.REMOVAL
    assert removal.removal_reason is RemovalReason.DAMAGED
    assert removal.total_amount == Decimal("20")
    assert removal.profit is None
    assert core_logic.get_product(runtime_context, product.product_id).stock == 3


def test_record_removal_rejects_unknown_reason(runtime_context, product_factory):
    product = product_factory()
    with pytest.raises(core_logic.ValidationError):
        core_logic.record_removal(runtime_context, core_logic.RemovalCommand(product.product_id, 1, "stolen"))
    assert runtime_context.transactions == []


def test_record_removal_insufficient_stock(runtime_context, product_factory):
    product = product_factory(stock=1)
    with pytest.raises(core_logic.InsufficientStockError):
        core_logic.record_removal(
            runtime_context,
            core_logic.RemovalCommand(product.product_id, 2, RemovalReason.LOST),
        )
    assert core_logic.get_product(runtime_context, product.product_id).stock == 1


def test_record_transaction_dispatches_by_command_type(runtime_context, product_factory):
    product = product_factory()
    result = core_logic.record_transaction(runtime_context, core_logic.PurchaseCommand(product.product_id, 1))
    assert result.transaction_type is TransactionType.PURCHASE
    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.record_transaction(runtime_context, object())


def test_ledger_is_newest_first(runtime_context, product_factory):
    product = product_factory()
    first = core_logic.record_purchase(runtime_context, core_logic.PurchaseCommand(product.product_id, 1))
    second = core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 1))
    third = core_logic.record_removal(
        runtime_context, core_logic.RemovalCommand(product.product_id, 1, RemovalReason.OTHER)
    )

    assert core_logic.list_transactions(runtime_context) == [third, second, first]


def test_stock_matches_net_of_ledger_after_mixed_operations(runtime_context, product_factory):
    """Stock should always equal initial + purchases - sales - removals and never go negative."""

    product_a = product_factory(name="A", stock=5)
    product_b = product_factory(name="B", stock=0)
    operations = [
        ("sale", product_a, 3),
        ("purchase", product_b, 4),
        ("sale", product_a, 5),  # rejected
        ("removal", product_b, 1),
        ("purchase", product_a, 7),
        ("sale", product_b, 4),  # rejected
        ("sale", product_b, 3),
        ("removal", product_a, 9),
        ("removal", product_a, 1),  # rejected
    ]
    for kind, product, quantity in operations:
        try:
            if kind == "sale":
                core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, quantity))
            elif kind == "purchase":
                core_logic.record_purchase(runtime_context, core_logic.PurchaseCommand(product.product_id, quantity))
            else:
                core_logic.record_removal(
                    runtime_context,
                    core_logic.RemovalCommand(product.product_id, quantity, RemovalReason.EXPIRED),
                )
        except core_logic.InsufficientStockError:
            pass
        for current in core_logic.list_products(runtime_context):
            assert current.stock >= 0

    for initial in (product_a, product_b):
        net = initial.stock
        for entry in core_logic.list_transactions(runtime_context):
            if entry.product_id != initial.product_id:
                continue
            if entry.transaction_type is TransactionType.PURCHASE:
                net += entry.quantity
            else:
                net -= entry.quantity
        assert core_logic.get_product(runtime_context, initial.product_id).stock == net

    assert core_logic.get_product(runtime_context, product_a.product_id).stock == 0
    assert core_logic.get_product(runtime_context, product_b.product_id).stock == 0
    assert len(core_logic.list_transactions(runtime_context)) == 6


def test_persistence_failure_surfaces_after_in_memory_apply(runtime_context, product_factory):
    """A failed write is reported; memory keeps the mutation until the next save."""

    product = product_factory(stock=5)
    stored_before = runtime_context.store.get("transactions")

    with patch.object(
        data_manager,
        "save_ledger",
        side_effect=data_manager.PersistenceFailure("disk full"),
    ):
        with pytest.raises(core_logic.PersistenceFailure):
            core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 2))

    assert core_logic.get_product(runtime_context, product.product_id).stock == 3
    assert len(runtime_context.transactions) == 1
    assert runtime_context.store.get("transactions") == stored_before

    core_logic.persist_context(runtime_context)
    assert core_logic.refresh_context(runtime_context).transactions == runtime_context.transactions


def test_concurrent_sales_never_oversell(runtime_context, product_factory):
    product = product_factory(stock=25)
    results: list[str] = []
    results_lock = threading.Lock()

    def sell_one() -> None:
        try:
            core_logic.record_sale(runtime_context, core_logic.SaleCommand(product.product_id, 1))
            outcome = "ok"
        except core_logic.InsufficientStockError:
            outcome = "rejected"
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=sell_one) for _ in range(40)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count("ok") == 25
    assert results.count("rejected") == 15
    assert core_logic.get_product(runtime_context, product.product_id).stock == 0
    assert len({t.transaction_id for t in runtime_context.transactions}) == 25


def test_snapshot_returns_independent_copies(runtime_context, product_factory):
    product_factory()
    products, transactions = core_logic.snapshot(runtime_context)
    products.clear()
    transactions.append("sentinel")

    assert len(runtime_context.products) == 1
    assert runtime_context.transactions == []


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def test_update_settings_persists_and_updates_symbol(runtime_context):
    record = core_logic.update_settings(runtime_context, company_name=" Bazaar ", currency="eur")

    assert record == data_manager.SettingsRecord("Bazaar", "EUR")
    assert runtime_context.shop_settings == record
    assert core_logic.currency_symbol(runtime_context) == "€"
    assert core_logic.refresh_context(runtime_context).shop_settings == record


@pytest.mark.parametrize("code", ["", "EURO", "12A", "e"])
def test_update_settings_rejects_bad_currency(runtime_context, code):
    with pytest.raises(core_logic.ValidationError):
        core_logic.update_settings(runtime_context, company_name="X", currency=code)
    assert runtime_context.store.get("settings") is None
