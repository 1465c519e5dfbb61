"""Integration tests describing the end-to-end Bookly workflows.

These scenarios run the data access layer, the business logic layer and the
CLI together against a real workbook on disk.
"""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from bookly import cli, constants, core_logic, data_manager, setup_excel
from bookly.intake import CustomerBlock, OrderLine, SaleIntent


def _register_candle(context: core_logic.RuntimeContext) -> data_manager.Product:
    """Append a single product through the business logic layer."""

    return core_logic.add_product(
        context,
        product_id="P-CANDLE",
        name="Scented Candle",
        price=Decimal("12"),
        cost_price=Decimal("3"),
        stock=5,
        category="Home",
    )


def test_sale_lifecycle_flow(runtime_context):
    """Walk through a catalog, sale, and reporting cycle using both layers."""

    context = runtime_context
    _register_candle(context)

    # Persist and reload so later steps read what the workbook holds.
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    core_logic.stage_sale(
        context,
        SaleIntent(
            blocks=(
                CustomerBlock(
                    handle="@ada",
                    lines=(OrderLine("candle", 2),),
                    payment_method=constants.PaymentMethod.BOOKLY_WALLET,
                    order_total=Decimal("24.60"),
                ),
            )
        ),
    )
    result = core_logic.commit_sale(context)
    (transaction,) = result.transactions

    assert transaction.product_id == "P-CANDLE"
    assert transaction.fee == Decimal("0.600")
    assert transaction.total == Decimal("24.600")
    assert context.catalog.get("P-CANDLE").stock == 3

    core_logic.add_expense(
        context,
        amount=Decimal("5"),
        category=constants.ExpenseCategory.LOGISTICS,
        description="Dispatch rider",
    )
    core_logic.persist_context(context)
    reloaded = core_logic.refresh_context(context)

    product = reloaded.catalog.get("P-CANDLE")
    assert (product.stock, product.total_sales) == (3, 2)
    customer = reloaded.directory.find_by_handle("@ada")
    assert customer.order_count == 1
    assert customer.ltv == Decimal("24.60")
    stored = reloaded.ledger.get(transaction.transaction_id)
    assert stored.total == transaction.total
    assert stored.items[0].unit_price == Decimal("12")

    summary = core_logic.calculate_profit_summary(reloaded)
    assert summary.revenue == Decimal("24.6")
    assert summary.cost_of_goods == Decimal("6")
    assert summary.expenses == Decimal("5")
    assert summary.net_profit == Decimal("13.6")


def test_refresh_discards_unsaved_changes(runtime_context):
    """Reloading the session drops anything that was never persisted."""

    context = runtime_context
    _register_candle(context)

    reloaded = core_logic.refresh_context(context)

    assert core_logic.list_products(reloaded) == []


def test_edit_history_survives_persistence(runtime_context):
    """Edits, status changes and archiving are stored with the transaction."""

    context = runtime_context
    _register_candle(context)
    result = core_logic.commit_sale(
        context, SaleIntent(blocks=(CustomerBlock(handle="@ben", lines=(OrderLine("Scented Candle", 1),)),))
    )
    transaction_id = result.transactions[0].transaction_id

    core_logic.edit_transaction(context, transaction_id, {"total": Decimal("10"), "quantity": 2})
    core_logic.update_status(context, transaction_id, constants.TransactionStatus.PAID)
    core_logic.toggle_archive(context, transaction_id)
    core_logic.persist_context(context)

    stored = core_logic.refresh_context(context).ledger.get(transaction_id)

    assert stored.total == Decimal("10")
    assert stored.quantity == 2
    assert stored.status is constants.TransactionStatus.PAID
    assert stored.is_archived is True
    assert [entry.description for entry in stored.edit_history][0] == "Update: Total 12 -> 10, Qty 1 -> 2"


def test_schema_mismatch_is_rejected(config_factory):
    """A workbook configured for another schema version cannot be used."""

    bundle = config_factory(schema_version="0.0.1")
    context = core_logic.load_runtime_context(bundle.config_path)

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(context)
    assert cli.main(["--config", str(bundle.config_path), "profit"]) == 1


# ---------------------------------------------------------------------------
# CLI against a workbook
# ---------------------------------------------------------------------------


def test_cli_sale_flow_persists_between_invocations(config_file, capsys):
    """Each CLI call loads the workbook, applies its command and saves."""

    base = ["--config", str(config_file)]

    assert cli.main(base + ["add-product", "--name", "Scented Candle", "--price", "12", "--cost-price", "3", "--stock", "5"]) == 0
    assert cli.main(base + ["sale", "--customer", "@Ada", "--product", "candle", "--quantity", "2", "--unit-price", "12"]) == 0
    assert cli.main(base + ["add-expense", "--amount", "4", "--description", "Packaging", "--category", "Supplies"]) == 0
    capsys.readouterr()

    assert cli.main(base + ["profit"]) == 0
    assert "Margin:        58.3%" in capsys.readouterr().out

    assert cli.main(base + ["customers"]) == 0
    assert "@ada  New  orders=1" in capsys.readouterr().out

    assert cli.main(base + ["stock", "--low"]) == 0
    assert "Scented Candle  stock=3  sold=2" in capsys.readouterr().out

    context = cli.load_runtime_context(config_file)
    (transaction,) = core_logic.list_transactions(context)
    assert transaction.source is constants.SalesSource.WALK_IN
    assert transaction.total == Decimal("24")
    (expense,) = core_logic.list_expenses(context)
    assert expense.category is constants.ExpenseCategory.SUPPLIES


def test_cli_commit_payload_and_lifecycle(config_file, tmp_path, capsys):
    """A JSON extraction payload is committed, then edited and archived via the CLI."""

    base = ["--config", str(config_file)]
    assert cli.main(base + ["add-product", "--name", "Mug", "--price", "15", "--cost-price", "4", "--stock", "10"]) == 0

    payload_path = tmp_path / "order.json"
    payload_path.write_text(
        json.dumps(
            {
                "intent": "sale",
                "customers": [
                    {
                        "handle": "@jess",
                        "platform": "Instagram",
                        "deliveryFee": 2,
                        "orderTotal": 47,
                        "items": [{"productName": "Mug", "quantity": 3}],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    assert cli.main(base + ["commit", str(payload_path)]) == 0
    assert "1 line(s) logged" in capsys.readouterr().out

    (transaction,) = core_logic.list_transactions(cli.load_runtime_context(config_file))
    transaction_id = transaction.transaction_id
    assert transaction.total == Decimal("47")

    assert cli.main(base + ["set-status", "--transaction-id", transaction_id, "--status", "paid"]) == 0
    assert cli.main(base + ["edit", "--transaction-id", transaction_id, "--total", "45", "--note", "Discount"]) == 0
    assert cli.main(base + ["archive", "--transaction-id", transaction_id]) == 0

    stored = cli.load_runtime_context(config_file).ledger.get(transaction_id)
    assert stored.status is constants.TransactionStatus.PAID
    assert stored.total == Decimal("45")
    assert stored.edit_history[-1].description == "Discount"
    assert stored.is_archived is True

    capsys.readouterr()
    assert cli.main(base + ["log"]) == 0
    assert transaction_id not in capsys.readouterr().out
    assert cli.main(base + ["log", "--include-archived"]) == 0
    assert "[archived]" in capsys.readouterr().out


def test_cli_rule_violation_leaves_workbook_untouched(config_file):
    """A rejected command exits with code 2 and does not persist anything."""

    base = ["--config", str(config_file)]

    assert cli.main(base + ["set-status", "--transaction-id", "T-missing", "--status", "paid"]) == 2
    assert cli.main(base + ["add-customer", "--handle", "@ada"]) == 0
    assert cli.main(base + ["add-customer", "--handle", "ADA"]) == 2

    context = cli.load_runtime_context(config_file)
    assert [customer.handle for customer in core_logic.list_customers(context)] == ["@ada"]


# ---------------------------------------------------------------------------
# Workbook setup script
# ---------------------------------------------------------------------------


def test_setup_creates_workbook_from_config(tmp_path):
    """run_from_config should build every sheet with bold headers."""

    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = data/session.xlsx\nBusinessName = Shop\nSchemaVersion = 1.0.0\n",
        encoding="utf-8",
    )

    created = setup_excel.run_from_config(config_path)

    assert created == (tmp_path / "data" / "session.xlsx").resolve()
    workbook = data_manager.open_workbook(created)
    for sheet_name, headers in data_manager.SHEET_COLUMNS.items():
        sheet = workbook[sheet_name]
        assert [cell.value for cell in sheet[1]] == list(headers)
        assert sheet.cell(row=1, column=1).font.bold is True


def test_setup_main_refuses_to_overwrite(config_file, capsys):
    """The setup script keeps existing workbooks unless --force is given."""

    assert setup_excel.main(["--config", str(config_file)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_file), "--force"]) == 0


def test_wallet_transfer_survives_persistence(config_factory):
    """A configured wallet keeps its debits across save and reload."""

    bundle = config_factory(extra_sections="\n[Wallet]\nOpeningBalance = 100\n")
    context = cli.load_runtime_context(bundle.config_path)
    assert context.profile.wallet.balance == Decimal("100")

    core_logic.transfer_from_wallet(
        context, amount=Decimal("40"), recipient="Rider Co", category=constants.ExpenseCategory.LOGISTICS
    )
    core_logic.persist_context(context)

    reloaded = cli.load_runtime_context(bundle.config_path)
    wallet = reloaded.profile.wallet
    assert wallet.balance == Decimal("60")
    assert [movement.recipient for movement in wallet.transactions] == ["Rider Co"]
    (expense,) = core_logic.list_expenses(reloaded)
    assert expense.amount == Decimal("40")

    core_logic.transfer_from_wallet(reloaded, amount=Decimal("60"), recipient="Landlord")
    core_logic.persist_context(reloaded)
    assert core_logic.refresh_context(reloaded).profile.wallet.balance == Decimal("0")
