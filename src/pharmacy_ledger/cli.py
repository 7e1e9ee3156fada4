"""Command-line entry points for the pharmacy ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Reports are printed to stdout; diagnostics go through the package
logger.
"""

from __future__ import annotations

import argparse
import csv
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO, Tuple

from . import core_logic, data_manager, log
from .constants import AccountKind, PurchaseOrderStatus, StockUnit
from .data_manager import PurchaseLine, PurchaseOrderLine, PurchaseReturnLine, SaleLine, SalesReturnLine


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


@dataclass(frozen=True)
class ItemSpec:
    """Parsed ``ID:QTY[:pack]`` argument."""

    inventory_item_id: str
    quantity: int
    unit: StockUnit = StockUnit.LOOSE


def parse_item_spec(raw: str) -> ItemSpec:
    """Parse ``ID:QTY`` or ``ID:QTY:pack`` into an :class:`ItemSpec`."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise argparse.ArgumentTypeError(f"Expected ID:QTY[:pack|loose], got {raw!r}")
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Quantity must be an integer in {raw!r}") from exc
    try:
        unit = StockUnit(parts[2]) if len(parts) == 3 else StockUnit.LOOSE
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Unit must be 'pack' or 'loose' in {raw!r}") from exc
    return ItemSpec(parts[0], quantity, unit)


def parse_order_line(raw: str) -> PurchaseOrderLine:
    """Parse ``NAME:QTY`` into a :class:`PurchaseOrderLine`."""
    name, _, quantity = raw.rpartition(":")
    if not name:
        raise argparse.ArgumentTypeError(f"Expected NAME:QTY, got {raw!r}")
    try:
        return PurchaseOrderLine(name=name, quantity=int(quantity))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Quantity must be an integer in {raw!r}") from exc


def parse_money(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw!r}") from exc


def read_intake_csv(path: Path) -> Tuple[PurchaseLine, ...]:
    """Read purchase/bulk-intake lines from a CSV file.

    The header row uses the persisted column names (``name``, ``batch``,
    ``expiry``, ``quantity``, ``purchasePrice``, ``mrp``, ``gstPercent``,
    ``hsnCode`` and optionally ``packType``, ``unitsPerPack``,
    ``looseQuantity``, ``freeQuantity``, ``minStockLimit``, ``brand``,
    ``category``).

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Item file not found: {path}")
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    lines = tuple(data_manager.deserialize_purchase_line(row) for row in rows)
    log.debug("Read %d intake lines from '%s'", len(lines), path)
    return lines


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pharmacy-ledger",
        description="Ledger and inventory tools for a pharmacy workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the working directory by default).",
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
    """Declare mutating CLI commands such as sales and purchases."""
    specs = {
        "sale": register_sale_command(subparsers),
        "purchase": register_purchase_command(subparsers),
        "sales-return": register_sales_return_command(subparsers),
        "purchase-return": register_purchase_return_command(subparsers),
        "payment": register_payment_command(subparsers),
        "open-account": register_open_account_command(subparsers),
        "bulk-intake": register_bulk_intake_command(subparsers),
        "purchase-order": register_purchase_order_command(subparsers),
        "import": register_import_command(subparsers),
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
        "balances": register_balances_command(subparsers),
        "ledger": register_ledger_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_kind_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--kind",
        choices=[member.value for member in AccountKind],
        required=True,
    )


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Bill a sale and post it to the customer's ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-name", default=None, help="Defaults to the walk-in customer.")
        parser.add_argument("--phone", default=None)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            type=parse_item_spec,
            required=True,
            help="Inventory line as ID:QTY[:pack]; repeat for several lines.",
        )
        parser.add_argument("--total", type=parse_money, required=True)
        parser.add_argument("--received", type=parse_money, default=Decimal("0"))
        parser.add_argument("--date", default=None)
        parser.add_argument("--invoice-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a supplier bill from a CSV of purchase lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier", required=True)
        parser.add_argument("--invoice-number", required=True)
        parser.add_argument("--items", type=Path, required=True, help="CSV file of purchase lines.")
        parser.add_argument("--total", type=parse_money, required=True)
        parser.add_argument("--gst-number", default=None)
        parser.add_argument("--purchase-order", default=None)
        parser.add_argument("--date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_sales_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales-return``."""
    name = "sales-return"
    help_text = "Take goods back from a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--invoice", required=True, help="Original invoice id.")
        parser.add_argument("--customer-name", required=True)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--item", dest="items", action="append", type=parse_item_spec, required=True)
        parser.add_argument("--refund", type=parse_money, required=True)
        parser.add_argument("--date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sales_return)


def register_purchase_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase-return``."""
    name = "purchase-return"
    help_text = "Send goods back to a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier", required=True)
        parser.add_argument("--item", dest="items", action="append", type=parse_item_spec, required=True)
        parser.add_argument("--value", type=parse_money, required=True)
        parser.add_argument("--date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase_return)


def register_payment_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``payment``."""
    name = "payment"
    help_text = "Record a payment against an existing account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--account-id", required=True)
        parser.add_argument("--amount", type=parse_money, required=True)
        parser.add_argument("--date", default=None)
        parser.add_argument("--description", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_payment)


def register_open_account_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``open-account``."""
    name = "open-account"
    help_text = "Create a customer or distributor with an opening balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--gst-number", default=None)
        parser.add_argument("--balance", type=parse_money, default=Decimal("0"))
        parser.add_argument("--as-of", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_open_account)


def register_bulk_intake_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bulk-intake``."""
    name = "bulk-intake"
    help_text = "Merge a CSV of stock lines into inventory."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--items", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bulk_intake)


def register_purchase_order_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase-order``."""
    name = "purchase-order"
    help_text = "Create a purchase order."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--distributor", required=True)
        parser.add_argument("--line", dest="lines", action="append", type=parse_order_line, required=True)
        parser.add_argument(
            "--status",
            choices=[PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.ORDERED.value],
            default=PurchaseOrderStatus.DRAFT.value,
        )
        parser.add_argument("--date", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase_order)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Replace all stored data from a JSON backup."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--input", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--low", action="store_true", help="Only list items at or below their minimum.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_stock_report, mutates=False
    )


def register_balances_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``balances``."""
    name = "balances"
    help_text = "Display outstanding account balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_balances_report, mutates=False
    )


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "Display one account's ledger with running balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_kind_argument(parser)
        parser.add_argument("--account-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_ledger_report, mutates=False
    )


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write every stored collection as a JSON backup."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None, help="Defaults to stdout.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name, help_text=help_text, register=registrar, execute=run_export, mutates=False
    )


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


def translate_sale(args: argparse.Namespace, *, walk_in_name: str) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        customer_name=args.customer_name or walk_in_name,
        customer_phone=args.phone,
        items=tuple(
            SaleLine(inventory_item_id=item.inventory_item_id, name=item.inventory_item_id,
                     quantity=item.quantity, unit=item.unit)
            for item in args.items
        ),
        total=args.total,
        amount_received=args.received,
        date=args.date,
        invoice_id=args.invoice_id,
    )


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        supplier=args.supplier,
        invoice_number=args.invoice_number,
        items=read_intake_csv(args.items),
        total_amount=args.total,
        supplier_gst_number=args.gst_number,
        purchase_order_id=args.purchase_order,
        date=args.date,
    )


def translate_sales_return(args: argparse.Namespace) -> core_logic.SalesReturnCommand:
    return core_logic.SalesReturnCommand(
        original_invoice_id=args.invoice,
        customer_name=args.customer_name,
        customer_id=args.customer_id,
        items=tuple(
            SalesReturnLine(inventory_item_id=item.inventory_item_id, name=item.inventory_item_id,
                            return_quantity=item.quantity, unit=item.unit)
            for item in args.items
        ),
        total_refund=args.refund,
        date=args.date,
    )


def translate_purchase_return(args: argparse.Namespace) -> core_logic.PurchaseReturnCommand:
    return core_logic.PurchaseReturnCommand(
        supplier=args.supplier,
        items=tuple(
            PurchaseReturnLine(inventory_item_id=item.inventory_item_id, name=item.inventory_item_id,
                               return_quantity=item.quantity, unit=item.unit)
            for item in args.items
        ),
        total_value=args.value,
        date=args.date,
    )


def translate_payment(args: argparse.Namespace) -> core_logic.PaymentCommand:
    return core_logic.PaymentCommand(
        kind=AccountKind(args.kind),
        account_id=args.account_id,
        amount=args.amount,
        date=args.date,
        description=args.description,
    )


def translate_open_account(args: argparse.Namespace) -> core_logic.AccountOpeningCommand:
    return core_logic.AccountOpeningCommand(
        kind=AccountKind(args.kind),
        name=args.name,
        phone=args.phone,
        gst_number=args.gst_number,
        opening_balance=args.balance,
        as_of_date=args.as_of,
    )


def translate_purchase_order(args: argparse.Namespace) -> core_logic.PurchaseOrderCommand:
    return core_logic.PurchaseOrderCommand(
        distributor_name=args.distributor,
        items=tuple(args.lines),
        status=PurchaseOrderStatus(args.status),
        date=args.date,
    )


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    command = translate_sale(args, walk_in_name=context.settings.walk_in_customer)
    result = core_logic.record_sale(context, command)
    print(f"Recorded sale {result.header.transaction_id}")
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    command = translate_purchase(args)
    result = core_logic.record_purchase(context, command)
    print(f"Recorded purchase {result.header.serial_id}")
    return 0


def run_sales_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = translate_sales_return(args)
    result = core_logic.record_sales_return(context, command)
    print(f"Recorded sales return {result.header.return_id}")
    return 0


def run_purchase_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = translate_purchase_return(args)
    result = core_logic.record_purchase_return(context, command)
    print(f"Recorded purchase return {result.header.return_id}")
    return 0


def run_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = translate_payment(args)
    result = core_logic.record_payment(context, command)
    print(f"Balance of {result.account.account_id}: {result.account.current_balance}")
    return 0


def run_open_account(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = translate_open_account(args)
    result = core_logic.record_account_opening(context, command)
    print(f"Opened {result.account.kind.value} {result.account.account_id}")
    return 0


def run_bulk_intake(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = core_logic.BulkIntakeCommand(items=read_intake_csv(args.items))
    core_logic.record_bulk_intake(context, command)
    print(f"Merged {len(command.items)} stock lines")
    return 0


def run_purchase_order(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = translate_purchase_order(args)
    result = core_logic.record_purchase_order(context, command)
    print(f"Created purchase order {result.header.order_id}")
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Restore a JSON backup through the gateway."""
    path = Path(args.input).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Backup file not found: {path}")
    core_logic.import_backup(context, path.read_text(encoding="utf-8"))
    print(f"Imported backup from {path}")
    return 0


def run_stock_report(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    *,
    stream: TextIO | None = None,
) -> int:
    """Execute the stock reporting workflow."""
    stream = stream or sys.stdout
    items = core_logic.list_low_stock_items(context) if args.low else context.repository.inventory
    for item in items:
        print(f"{item.item_id}\t{item.name}\t{item.batch}\t{item.stock}", file=stream)
    return 0


def run_balances_report(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    *,
    stream: TextIO | None = None,
) -> int:
    """Execute the outstanding balance reporting workflow."""
    stream = stream or sys.stdout
    kind = AccountKind(args.kind)
    names = {account.account_id: account.name for account in core_logic.list_accounts(context, kind)}
    for account_id, balance in core_logic.calculate_outstanding_balances(context, kind).items():
        print(f"{account_id}\t{names.get(account_id, '')}\t{balance}", file=stream)
    return 0


def run_ledger_report(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    *,
    stream: TextIO | None = None,
) -> int:
    stream = stream or sys.stdout
    account = core_logic.get_account(context, AccountKind(args.kind), args.account_id)
    for entry in account.ledger:
        print(
            f"{entry.date}\t{entry.entry_type.value}\t{entry.description}\t"
            f"{entry.debit}\t{entry.credit}\t{entry.balance}",
            file=stream,
        )
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the gateway snapshot to ``--output`` or stdout."""
    text = core_logic.export_backup(context)
    if args.output is None:
        print(text)
        return 0
    output = Path(args.output).expanduser()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    log.info("Exported backup to '%s'", output)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, core_logic.PersistenceFailure):
        log.error("%s", error)
        return 4
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist the session state after a successful write command."""
    core_logic.persist_context(context)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        try:
            exit_code = dispatch_command(context, args, command_table)
        except core_logic.PartialCreationFailure:
            # The event itself was applied; only the new account was rolled back.
            persist_workbook(context)
            raise
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
