"""Command-line entry points for the inventory ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Keeping the CLI thin lets tests and other
front-ends reuse the same parser configuration.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import auth, core_logic, export, log, reporting
from .constants import DateRange, RemovalReason, TransactionType
from .currency import format_amount
from .data_manager import PersistenceFailure


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    requires_auth: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="inventory-cli",
        description="Command-line tools for the offline inventory ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the current directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    session_specs = register_session_commands(subparsers)
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*session_specs.values(), *write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
    *,
    requires_auth: bool = True,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=execute,
        requires_auth=requires_auth,
    )


def register_session_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare ``login`` and ``logout``."""

    def login_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--username", required=True)
        parser.add_argument("--password", required=True)

    specs = {
        "login": _simple_spec("login", "Log in to the ledger.", run_login, login_arguments, requires_auth=False),
        "logout": _simple_spec("logout", "Log out of the ledger.", run_logout, requires_auth=False),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "remove": register_remove_command(subparsers),
        "settings": register_settings_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""

    def products_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None, help="Only show products whose name, category or supplier contains this text.")

    def log_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None, help="Only show entries whose product name contains this text.")
        parser.add_argument("--type", dest="transaction_type", choices=[m.value for m in TransactionType])
        parser.add_argument("--range", dest="date_range", choices=[m.value for m in DateRange], default=DateRange.ALL.value)

    def report_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--range", dest="date_range", choices=[m.value for m in DateRange], default=DateRange.MONTH.value)
        parser.add_argument("--export", type=Path, default=None, help="Write the report to this .xlsx file.")

    specs = {
        "products": _simple_spec("products", "List the catalog with stock levels.", run_products_report, products_arguments),
        "log": _simple_spec("log", "Display the transaction log, newest first.", run_log_report, log_arguments),
        "dashboard": _simple_spec("dashboard", "Display this month's dashboard.", run_dashboard_report),
        "report": _simple_spec("report", "Display totals and best sellers for a range.", run_range_report, report_arguments),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _product_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument("--category", required=required)
    parser.add_argument("--supplier-name", required=required)
    parser.add_argument("--buying-price", required=required)
    parser.add_argument("--selling-price", required=required)
    parser.add_argument("--stock", type=int, default=None)
    parser.add_argument("--image-uri", default=None)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    return _simple_spec(
        "add-product",
        "Add a product to the catalog.",
        run_add_product,
        lambda parser: _product_arguments(parser, required=True),
    )


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        _product_arguments(parser, required=False)

    return _simple_spec("update-product", "Edit fields of a product.", run_update_product, arguments)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    return _simple_spec(
        "delete-product",
        "Delete a product; its transactions are kept.",
        run_delete_product,
        lambda parser: parser.add_argument("--product-id", required=True),
    )


def _movement_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--quantity", required=True, type=int)
    parser.add_argument("--notes", dest="notes", default=None)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    return _simple_spec("sale", "Record a sale.", run_sale, _movement_arguments)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    return _simple_spec("purchase", "Record a purchase (restock).", run_purchase, _movement_arguments)


def register_remove_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        _movement_arguments(parser)
        parser.add_argument("--reason", required=True, choices=[member.value for member in RemovalReason])

    return _simple_spec("remove", "Remove damaged, expired, lost or other stock.", run_remove, arguments)


def register_settings_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``settings``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--company-name", default=None)
        parser.add_argument("--currency", default=None)

    return _simple_spec("settings", "Show or change the company name and currency.", run_settings, arguments)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor.

    Raises:
        KeyError: If no command or an unknown command was parsed.
        PermissionError: If the command needs a logged-in user and there is
            none.
    """
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    if spec.requires_auth and auth.current_user(context) is None:
        raise PermissionError("Not logged in; run 'inventory-cli login' first")
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
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "category": args.category,
        "supplier_name": args.supplier_name,
        "buying_price": core_logic.require_nonnegative_money(args.buying_price, "buying_price"),
        "selling_price": core_logic.require_nonnegative_money(args.selling_price, "selling_price"),
        "stock": args.stock if args.stock is not None else 0,
        "image_uri": args.image_uri,
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the fields an update should change."""
    fields: Dict[str, Any] = {}
    for name in ("name", "category", "supplier_name", "stock", "image_uri"):
        value = getattr(args, name, None)
        if value is not None:
            fields[name] = value
    for name in ("buying_price", "selling_price"):
        value = getattr(args, name, None)
        if value is not None:
            fields[name] = core_logic.require_nonnegative_money(value, name)
    return fields


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(product_id=args.product_id, quantity=args.quantity, notes=args.notes)


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(product_id=args.product_id, quantity=args.quantity, notes=args.notes)


def translate_remove(args: argparse.Namespace) -> core_logic.RemovalCommand:
    """Translate CLI args into a removal command object."""
    return core_logic.RemovalCommand(
        product_id=args.product_id,
        quantity=args.quantity,
        reason=RemovalReason(args.reason),
        notes=args.notes,
    )


def run_login(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if auth.login(context, args.username, args.password):
        print(f"Logged in as {args.username}")
        return 0
    print("Invalid username or password")
    return 2


def run_logout(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    auth.logout(context)
    print("Logged out")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, **translate_add_product(args))
    print(product.product_id)
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    core_logic.update_product(context, args.product_id, **translate_update_product(args))
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-product workflow in the BLL."""
    if not core_logic.delete_product(context, args.product_id):
        print(f"No product with id {args.product_id}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    transaction = core_logic.record_sale(context, translate_sale(args))
    print(transaction.transaction_id)
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    transaction = core_logic.record_purchase(context, translate_purchase(args))
    print(transaction.transaction_id)
    return 0


def run_remove(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the removal workflow via the BLL."""
    transaction = core_logic.record_removal(context, translate_remove(args))
    print(transaction.transaction_id)
    return 0


def run_settings(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Show the settings, or save them when either option is given."""
    current = context.shop_settings
    if args.company_name is not None or args.currency is not None:
        current = core_logic.update_settings(
            context,
            company_name=args.company_name if args.company_name is not None else current.company_name,
            currency=args.currency if args.currency is not None else current.currency,
        )
    print(f"Company: {current.company_name}")
    print(f"Currency: {current.currency} ({core_logic.currency_symbol(context)})")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the catalog in catalog order."""
    code = context.shop_settings.currency
    for product in reporting.search_products(core_logic.list_products(context), getattr(args, "search", None)):
        print(
            f"{product.product_id}\t{product.name}\t{product.category}\tstock={product.stock}\t"
            f"buy={format_amount(product.buying_price, code)}\tsell={format_amount(product.selling_price, code)}"
        )
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the transaction log, optionally filtered by type and range."""
    now = reporting.local_now()
    transaction_type = TransactionType(args.transaction_type) if args.transaction_type else None
    entries = reporting.filter_transactions(
        core_logic.list_transactions(context),
        start=reporting.range_start(args.date_range, now),
        transaction_type=transaction_type,
        query=getattr(args, "search", None),
    )
    code = context.shop_settings.currency
    for entry in entries:
        extra = f"\treason={entry.removal_reason.value}" if entry.removal_reason is not None else ""
        print(
            f"{entry.date.isoformat(timespec='seconds')}\t{entry.transaction_type.value}\t"
            f"{entry.product_name}\tx{entry.quantity}\t{format_amount(entry.total_amount, code)}{extra}"
        )
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print this month's dashboard figures."""
    products, transactions = core_logic.snapshot(context)
    summary = reporting.dashboard_summary(products, transactions, reporting.local_now())
    code = context.shop_settings.currency
    print(f"Products: {summary.total_products}")
    print(f"Stock value: {format_amount(summary.stock_value, code)}")
    print(f"Monthly sales: {format_amount(summary.monthly_sales, code)}")
    print(f"Monthly purchases: {format_amount(summary.monthly_purchases, code)}")
    print(f"Monthly profit: {format_amount(summary.monthly_profit, code)}")
    for product in summary.low_stock_products:
        print(f"Low stock: {product.name} ({product.stock})")
    return 0


def run_range_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print totals and best sellers, exporting them when ``--export`` is given."""
    now = reporting.local_now()
    products, transactions = core_logic.snapshot(context)
    report = reporting.report_data(products, transactions, args.date_range, now)
    code = context.shop_settings.currency
    print(f"Total sales: {format_amount(report.total_sales, code)}")
    print(f"Total purchases: {format_amount(report.total_purchases, code)}")
    print(f"Net profit: {format_amount(report.total_profit, code)}")
    print(f"Transactions: {report.transaction_count}")
    for rank, item in enumerate(report.top_products, start=1):
        print(f"#{rank}\t{item.product_name}\t{item.total_quantity}\t{format_amount(item.total_revenue, code)}")
    if args.export is not None:
        written = export.export_report(context, args.export, args.date_range, now=now)
        print(f"Exported to {written}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, PersistenceFailure):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
