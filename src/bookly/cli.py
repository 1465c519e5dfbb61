"""Command-line entry points for Bookly.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on :mod:`bookly.core_logic`, and printing
the read-side reports. Write commands persist the session snapshot once they
succeed.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, data_manager, log
from .constants import (
    CustomerTier,
    ExpenseCategory,
    PaymentMethod,
    SalesSource,
    TransactionStatus,
    currency_symbol,
)


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bookly-cli",
        description="Command-line tools for a Bookly session workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and restocks."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "restock": register_restock_command(subparsers),
        "sale": register_sale_command(subparsers),
        "commit": register_commit_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
        "archive": register_archive_command(subparsers),
        "set-status": register_set_status_command(subparsers),
        "edit": register_edit_command(subparsers),
        "merge-customers": register_merge_customers_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "profit": register_profit_command(subparsers),
        "customers": register_customers_command(subparsers),
        "log": register_log_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--cost-price", default="0")
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--category", default="General")
        parser.add_argument("--description", default=None)
        parser.add_argument("--stock-threshold", type=int, default=None)
        parser.add_argument("--product-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Register a customer in the directory."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--handle", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--channel", choices=[member.value for member in SalesSource], default=None)
        parser.add_argument("--address", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Add units to a product's stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a single-line sale entered by hand."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer", required=True, help="Customer handle, e.g. @jess.")
        parser.add_argument("--product", required=True, help="Product name as it appears in the catalog.")
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--unit-price", required=True)
        parser.add_argument(
            "--source",
            choices=[member.value for member in SalesSource],
            default=SalesSource.WALK_IN.value,
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH_TRANSFER.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_commit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``commit``."""
    name = "commit"
    help_text = "Commit a sale extraction payload stored as JSON."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("payload", type=Path, help="Path to the JSON extraction payload.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_commit)


def register_add_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    name = "add-expense"
    help_text = "Record an overhead expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--category",
            choices=[member.value for member in ExpenseCategory],
            default=ExpenseCategory.OTHER.value,
        )
        parser.add_argument("--description", required=True)
        parser.add_argument("--vendor", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_expense)


def register_archive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``archive``."""
    name = "archive"
    help_text = "Archive a transaction, or restore it with --restore."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--restore", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_archive)


def register_set_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-status``."""
    name = "set-status"
    help_text = "Change the status of a transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--status", choices=[member.value for member in TransactionStatus], required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_status)


def register_edit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit``."""
    name = "edit"
    help_text = "Correct the total, quantity, source or status of a transaction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.add_argument("--total", default=None)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--source", choices=[member.value for member in SalesSource], default=None)
        parser.add_argument("--status", choices=[member.value for member in TransactionStatus], default=None)
        parser.add_argument("--note", default=None, help="Override the generated edit description.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit)


def register_merge_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``merge-customers``."""
    name = "merge-customers"
    help_text = "Fold a duplicate customer into another."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--source", required=True, help="Handle of the duplicate to remove.")
        parser.add_argument("--target", required=True, help="Handle of the customer to keep.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_merge_customers)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--low", action="store_true", help="Only list products below their threshold.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report, mutates=False)


def register_profit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``profit``."""
    name = "profit"
    help_text = "Display revenue, cost, and profit summaries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_profit_report, mutates=False)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "Display the customer directory with CRM tiers."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--tier", choices=[member.value for member in CustomerTier], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_customers_report, mutates=False
    )


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--include-archived", action="store_true")
        parser.add_argument("--json", action="store_true", help="Print one JSON object per transaction.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report, mutates=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-product keyword arguments."""
    return {
        "name": args.name,
        "price": Decimal(args.price),
        "cost_price": Decimal(args.cost_price),
        "stock": args.stock,
        "category": args.category,
        "description": args.description,
        "stock_threshold": args.stock_threshold,
        "product_id": args.product_id,
    }


def translate_sale(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into manual-entry keyword arguments."""
    return {
        "customer_handle": args.customer,
        "product_name": args.product,
        "quantity": args.quantity,
        "unit_price": Decimal(args.unit_price),
        "source": SalesSource(args.source),
        "payment_method": PaymentMethod(args.payment_method),
    }


def translate_edit(args: argparse.Namespace) -> Mapping[str, Any]:
    """Collect the fields the user asked to change."""
    updates: Dict[str, Any] = {}
    if args.total is not None:
        updates["total"] = Decimal(args.total)
    if args.quantity is not None:
        updates["quantity"] = args.quantity
    if args.source is not None:
        updates["source"] = SalesSource(args.source)
    if args.status is not None:
        updates["status"] = TransactionStatus(args.status)
    return updates


def read_payload(path: Path) -> Mapping[str, Any]:
    """Load a JSON extraction payload from ``path``."""
    with Path(path).open(encoding="utf-8") as handle:
        return json.load(handle)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    core_logic.add_product(context, **translate_add_product(args))
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow in the BLL."""
    core_logic.add_customer(
        context,
        handle=args.handle,
        channel=SalesSource(args.channel) if args.channel else None,
        name=args.name,
        address=args.address,
    )
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow via the BLL."""
    core_logic.require_positive_quantity(args.quantity)
    core_logic.adjust_stock(context, args.product_id, args.quantity)
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual sale workflow via the BLL."""
    result = core_logic.record_manual_sale(context, **translate_sale(args))
    print_commit_result(context, result)
    return 0


def run_commit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Stage the payload's sale and commit it in one step."""
    payload = read_payload(args.payload)
    staged = core_logic.apply_extraction(context, payload)
    if not isinstance(staged, core_logic.SaleIntent):
        raise core_logic.BusinessRuleViolation("Payload does not describe a sale")
    result = core_logic.commit_sale(context)
    print_commit_result(context, result)
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-expense workflow via the BLL."""
    core_logic.add_expense(
        context,
        amount=Decimal(args.amount),
        category=ExpenseCategory(args.category),
        description=args.description,
        vendor=args.vendor,
    )
    return 0


def run_archive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.set_archived(context, args.transaction_id, not args.restore)
    return 0


def run_set_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.update_status(context, args.transaction_id, TransactionStatus(args.status))
    return 0


def run_edit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction edit workflow via the BLL."""
    updates = translate_edit(args)
    if not updates:
        raise core_logic.BusinessRuleViolation("Nothing to edit: pass at least one field to change")
    core_logic.edit_transaction(context, args.transaction_id, updates, args.note)
    return 0


def run_merge_customers(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.merge_customers(context, args.source, args.target)
    return 0


def print_commit_result(
    context: core_logic.RuntimeContext,
    result: core_logic.CommitResult,
) -> None:
    """Print one line per logged transaction."""
    symbol = currency_symbol(context.profile.currency)
    for transaction in result.transactions:
        print(
            f"{transaction.transaction_id}  {transaction.customer_handle or '-'}  "
            f"{transaction.quantity} x {transaction.product_name}  {symbol}{transaction.total}"
        )
    print(f"{len(result.transactions)} line(s) logged")


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    products = core_logic.low_stock_products(context) if args.low else core_logic.list_products(context)
    for product in products:
        print(f"{product.product_id}  {product.name}  stock={product.stock}  sold={product.total_sales}")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit reporting workflow."""
    summary = core_logic.calculate_profit_summary(context)
    symbol = currency_symbol(context.profile.currency)
    print(f"Revenue:       {symbol}{summary.revenue}")
    print(f"Cost of goods: {symbol}{summary.cost_of_goods}")
    print(f"Expenses:      {symbol}{summary.expenses}")
    print(f"Net profit:    {symbol}{summary.net_profit}")
    print(f"Margin:        {summary.margin:.1f}%")
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List customers with their tier, order count and lifetime value."""
    symbol = currency_symbol(context.profile.currency)
    wanted = CustomerTier(args.tier) if args.tier else None
    for customer in core_logic.list_customers(context):
        tier = core_logic.customer_tier(customer, context.profile.vip_threshold)
        if wanted is not None and tier != wanted:
            continue
        print(
            f"{customer.handle}  {tier.value}  orders={customer.order_count}  ltv={symbol}{customer.ltv}"
        )
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction log reporting workflow."""
    symbol = currency_symbol(context.profile.currency)
    for transaction in core_logic.list_transactions(context, include_archived=args.include_archived):
        if args.json:
            print(json.dumps(data_manager.record_as_dict(transaction), default=str))
            continue
        flag = " [archived]" if transaction.is_archived else ""
        print(
            f"{transaction.timestamp:%Y-%m-%d %H:%M}  {transaction.transaction_id}  "
            f"{transaction.customer_handle or '-'}  {transaction.quantity} x {transaction.product_name}  "
            f"{symbol}{transaction.total}  {transaction.status.value}{flag}"
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
