"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from decimal import Decimal
from pathlib import Path
from typing import Iterable

import pytest

from bookly import cli, core_logic
from bookly.constants import ExpenseCategory, PaymentMethod, SalesSource, TransactionStatus
from bookly.intake import CustomerBlock, OrderLine, SaleIntent


WRITE_COMMANDS = {
    "add-product",
    "add-customer",
    "restock",
    "sale",
    "commit",
    "add-expense",
    "archive",
    "set-status",
    "edit",
    "merge-customers",
}

READ_COMMANDS = {
    "stock",
    "profit",
    "customers",
    "log",
}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return cli.build_parser()


@pytest.fixture
def subparsers_action(cli_parser):
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


def _parse(argv: list[str]) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(argv)


def _sell_mug(context: core_logic.RuntimeContext, handle: str = "@jess") -> str:
    result = core_logic.commit_sale(
        context, SaleIntent(blocks=(CustomerBlock(handle=handle, lines=(OrderLine("Mug", 1),)),))
    )
    return result.transactions[0].transaction_id


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert parser.prog == "bookly-cli"
    assert "Bookly" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_only_write_commands_mutate(subparsers_action):
    """Read commands are flagged so main skips persisting after them."""

    write_specs = cli.register_write_commands(subparsers_action)
    read_specs = cli.register_read_commands(subparsers_action)

    assert set(write_specs) == WRITE_COMMANDS
    assert set(read_specs) == READ_COMMANDS
    assert all(spec.mutates for spec in write_specs.values())
    assert not any(spec.mutates for spec in read_specs.values())


def test_sale_command_parses_arguments():
    """The sale sub-command should accept manual entry fields with defaults."""

    namespace = _parse(["sale", "--customer", "@jess", "--product", "Mug", "--quantity", "3", "--unit-price", "15"])

    assert namespace.command == "sale"
    assert namespace.quantity == 3
    assert namespace.source == SalesSource.WALK_IN.value
    assert namespace.payment_method == PaymentMethod.CASH_TRANSFER.value


def test_set_status_command_restricts_choices():
    """Unknown statuses are rejected by argparse."""

    with pytest.raises(SystemExit):
        _parse(["set-status", "--transaction-id", "T1", "--status", "refunded"])


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Runtime context and dispatch
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file):
    """load_runtime_context should load and validate the given config."""

    context = cli.load_runtime_context(config_file)

    assert context.settings.profile.name == "Test Shop"


def test_load_runtime_context_supports_defaults(monkeypatch, tmp_path):
    """load_runtime_context should resolve config.ini from the working directory."""

    sentinel_context = object()
    seen = {}

    def fake_loader(path: Path | None) -> object:
        seen["path"] = path
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    monkeypatch.setattr(core_logic, "ensure_schema_version", lambda context: None)
    monkeypatch.chdir(tmp_path)

    assert cli.load_runtime_context() is sentinel_context
    assert seen["path"] == tmp_path / "config.ini"


def test_dispatch_command_handles_unknown_commands(context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_translate_add_product_converts_money():
    """Prices are parsed into Decimal values."""

    namespace = _parse(["add-product", "--name", "Mug", "--price", "15.50", "--cost-price", "4", "--stock", "10"])

    payload = cli.translate_add_product(namespace)

    assert payload["price"] == Decimal("15.50")
    assert payload["cost_price"] == Decimal("4")
    assert payload["stock"] == 10
    assert payload["product_id"] is None


def test_translate_edit_collects_only_supplied_fields():
    """Only fields passed on the command line become updates."""

    namespace = _parse(["edit", "--transaction-id", "T1", "--total", "50", "--status", "paid"])

    assert cli.translate_edit(namespace) == {"total": Decimal("50"), "status": TransactionStatus.PAID}


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_add_product_invokes_bll(context, monkeypatch):
    """run_add_product should delegate to the business logic layer."""

    payload = {"name": "Plate"}
    monkeypatch.setattr(cli, "translate_add_product", lambda value: payload)
    called: dict[str, object] = {}

    def fake_add_product(context: core_logic.RuntimeContext, **data: object) -> None:
        called["context"] = context
        called["data"] = data

    monkeypatch.setattr(cli.core_logic, "add_product", fake_add_product)

    assert cli.run_add_product(context, argparse.Namespace()) == 0
    assert called == {"context": context, "data": payload}


def test_run_sale_commits_manual_entry(context, capsys):
    """run_sale should log the line and print it."""

    namespace = _parse(["sale", "--customer", "@jess", "--product", "mug", "--quantity", "2", "--unit-price", "14"])

    assert cli.run_sale(context, namespace) == 0

    (transaction,) = context.ledger.list_transactions()
    assert transaction.total == Decimal("28")
    output = capsys.readouterr().out
    assert "2 x Mug" in output
    assert "₦28" in output


def test_run_commit_reads_payload_file(context, tmp_path):
    """run_commit should stage and commit a JSON sale payload."""

    payload_path = tmp_path / "payload.json"
    payload_path.write_text(
        json.dumps(
            {
                "intent": "sale",
                "customers": [
                    {"handle": "@jess", "items": [{"productName": "Mug", "quantity": 3}], "deliveryFee": 2},
                    {"handle": "@ben", "items": [{"productName": "Mug", "quantity": 1}]},
                ],
            }
        ),
        encoding="utf-8",
    )

    assert cli.run_commit(context, _parse(["commit", str(payload_path)])) == 0

    assert [transaction.total for transaction in context.ledger] == [Decimal("47"), Decimal("15")]
    assert context.pending_sale is None


def test_run_commit_rejects_non_sale_payload(context, tmp_path):
    """A payload that is not a sale cannot be committed."""

    payload_path = tmp_path / "payload.json"
    payload_path.write_text(json.dumps({"intent": "inquiry", "replies": ["Hi"]}), encoding="utf-8")

    with pytest.raises(core_logic.BusinessRuleViolation):
        cli.run_commit(context, _parse(["commit", str(payload_path)]))


def test_run_restock_requires_positive_quantity(context):
    """Restocking by zero units is refused."""

    with pytest.raises(ValueError):
        cli.run_restock(context, _parse(["restock", "--product-id", "P-MUG", "--quantity", "0"]))
    assert cli.run_restock(context, _parse(["restock", "--product-id", "P-MUG", "--quantity", "4"])) == 0
    assert context.catalog.get("P-MUG").stock == 14


def test_run_add_expense_records_expense(context):
    """run_add_expense should add an expense with the chosen category."""

    namespace = _parse(["add-expense", "--amount", "12.5", "--category", "Logistics", "--description", "Rider"])

    cli.run_add_expense(context, namespace)

    (expense,) = context.expenses.list_expenses()
    assert expense.amount == Decimal("12.5")
    assert expense.category is ExpenseCategory.LOGISTICS


def test_run_lifecycle_commands(context):
    """archive, set-status and edit should act on the named transaction."""

    transaction_id = _sell_mug(context)

    cli.run_set_status(context, _parse(["set-status", "--transaction-id", transaction_id, "--status", "paid"]))
    cli.run_edit(context, _parse(["edit", "--transaction-id", transaction_id, "--quantity", "2"]))
    cli.run_archive(context, _parse(["archive", "--transaction-id", transaction_id]))

    transaction = context.ledger.get(transaction_id)
    assert transaction.status is TransactionStatus.PAID
    assert transaction.quantity == 2
    assert transaction.is_archived is True
    assert transaction.edit_history[-1].description == "Update: Qty 1 -> 2"

    cli.run_archive(context, _parse(["archive", "--transaction-id", transaction_id, "--restore"]))
    assert context.ledger.get(transaction_id).is_archived is False


def test_run_edit_requires_a_change(context):
    """An edit without any field is a rule violation."""

    transaction_id = _sell_mug(context)

    with pytest.raises(core_logic.BusinessRuleViolation):
        cli.run_edit(context, _parse(["edit", "--transaction-id", transaction_id]))


def test_run_merge_customers(context):
    """merge-customers should fold the source handle into the target."""

    _sell_mug(context, "@jess")
    _sell_mug(context, "@jesss")

    cli.run_merge_customers(context, _parse(["merge-customers", "--source", "@jesss", "--target", "@jess"]))

    assert [customer.handle for customer in context.directory] == ["@jess"]


def test_run_profit_report_prints_summary(context, capsys):
    """The profit report prints revenue and margin with the currency symbol."""

    _sell_mug(context)

    assert cli.run_profit_report(context, _parse(["profit"])) == 0

    output = capsys.readouterr().out
    assert "Revenue:       ₦15" in output
    assert "Margin:        73.3%" in output


def test_run_customers_report_filters_by_tier(context, capsys):
    """The customers report can be limited to one tier."""

    _sell_mug(context, "@jess")
    _sell_mug(context, "@jess")
    _sell_mug(context, "@ben")

    cli.run_customers_report(context, _parse(["customers", "--tier", "Returning"]))

    output = capsys.readouterr().out
    assert "@jess  Returning  orders=2" in output
    assert "@ben" not in output


def test_run_stock_report_can_show_low_stock_only(context, capsys):
    """--low limits the stock report to products below threshold."""

    core_logic.add_product(context, name="Candle", price=Decimal("5"), stock=1)

    cli.run_stock_report(context, _parse(["stock", "--low"]))

    output = capsys.readouterr().out
    assert "Candle" in output
    assert "Mug" not in output


def test_run_log_report_hides_archived_and_prints_json(context, capsys):
    """The log hides archived rows by default and can emit JSON lines."""

    kept = _sell_mug(context)
    hidden = _sell_mug(context)
    core_logic.toggle_archive(context, hidden)

    cli.run_log_report(context, _parse(["log", "--json"]))

    rows = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert [row["TransactionID"] for row in rows] == [kept]
    assert rows[0]["Status"] == "confirmed"


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (core_logic.MissingReferenceError("unknown"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


def test_persist_workbook_handles_read_only_workbooks(context, monkeypatch):
    """persist_workbook should surface permission problems as RuntimeError."""

    def fake_persist(_: core_logic.RuntimeContext) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(cli.core_logic, "persist_context", fake_persist)
    with pytest.raises(RuntimeError, match="read-only"):
        cli.persist_workbook(context)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_persists_after_write_commands(monkeypatch, context):
    """main should persist once a write command succeeds."""

    parser = _stub_parser(command="sale")
    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, lambda *_: 0)}
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    persisted = {}
    monkeypatch.setattr(cli, "persist_workbook", lambda ctx: persisted.setdefault("context", ctx))

    assert cli.main(["sale"]) == 0
    assert persisted["context"] is context


def test_main_skips_persist_for_read_commands(monkeypatch, context):
    """Reports never rewrite the workbook."""

    parser = _stub_parser(command="profit")
    command_table = {"profit": cli.CommandSpec("profit", "help", lambda _: parser, lambda *_: 0, mutates=False)}
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", lambda _: (_ for _ in ()).throw(AssertionError("should not persist")))

    assert cli.main(["profit"]) == 0


def test_main_handles_bll_errors(monkeypatch, context):
    """main should surface business rule violations as non-zero exits."""

    parser = _stub_parser(command="sale")

    def failing(*_: object) -> int:
        raise core_logic.BusinessRuleViolation("invalid")

    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, failing)}
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", lambda _: (_ for _ in ()).throw(AssertionError("should not persist")))

    assert cli.main(["sale"]) == 2


def test_main_reports_missing_config(tmp_path):
    """A missing configuration file exits with code 3."""

    assert cli.main(["--config", str(tmp_path / "absent.ini"), "profit"]) == 3


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
