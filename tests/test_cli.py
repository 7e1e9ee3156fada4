"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import io
from decimal import Decimal
from typing import Iterable

import pytest

from pharmacy_ledger import cli, core_logic
from pharmacy_ledger.constants import AccountKind, PurchaseOrderStatus, StockUnit


WRITE_COMMANDS = {
    "sale",
    "purchase",
    "sales-return",
    "purchase-return",
    "payment",
    "open-account",
    "bulk-intake",
    "purchase-order",
    "import",
}

READ_COMMANDS = {
    "stock",
    "balances",
    "ledger",
    "export",
}

INTAKE_CSV = (
    "name,batch,expiry,quantity,purchasePrice,mrp,gstPercent,hsnCode,packType\n"
    "Paracetamol,B1,2026-06,2,1.10,2.20,12,3004,10's strip\n"
    "Cough Syrup,C7,2025-12,3,40,55,12,3004,\n"
)


def _parse(*argv: str) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(list(argv))


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "pharmacy-ledger"


def test_configure_subcommands_registers_all_commands(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert all(command_table[name].mutates for name in WRITE_COMMANDS)
    assert not any(command_table[name].mutates for name in READ_COMMANDS)


def test_register_write_commands_configures_parsers(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    for name in WRITE_COMMANDS:
        assert name in subparsers_action.choices


def test_register_read_commands_configures_parsers(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    for name in READ_COMMANDS:
        assert name in subparsers_action.choices


# ---------------------------------------------------------------------------
# Argument parsing helpers
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("I1:3", cli.ItemSpec("I1", 3, StockUnit.LOOSE)),
        ("I1:2:pack", cli.ItemSpec("I1", 2, StockUnit.PACK)),
        ("MANUAL-9:1:loose", cli.ItemSpec("MANUAL-9", 1, StockUnit.LOOSE)),
    ],
)
def test_parse_item_spec(raw, expected):
    assert cli.parse_item_spec(raw) == expected


@pytest.mark.parametrize("raw", ["I1", ":3", "I1:x", "I1:2:box", "a:1:pack:extra"])
def test_parse_item_spec_rejects_malformed_values(raw):
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_item_spec(raw)


def test_parse_order_line_keeps_colons_in_names():
    assert cli.parse_order_line("Vitamin C: 500mg:12").name == "Vitamin C: 500mg"
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_order_line("Aspirin:many")


def test_parse_money_rejects_garbage():
    assert cli.parse_money("12.50") == Decimal("12.50")
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_money("twelve")


def test_read_intake_csv_builds_purchase_lines(tmp_path):
    path = tmp_path / "lines.csv"
    path.write_text(INTAKE_CSV)

    lines = cli.read_intake_csv(path)

    assert [line.name for line in lines] == ["Paracetamol", "Cough Syrup"]
    assert lines[0].quantity == 2
    assert lines[0].pack_type == "10's strip"
    assert lines[1].pack_type is None
    assert lines[1].purchase_price == Decimal("40")


def test_read_intake_csv_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        cli.read_intake_csv(tmp_path / "missing.csv")


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def test_translate_sale_defaults_to_walk_in_customer():
    args = _parse("sale", "--item", "I1:2", "--item", "I2:1:pack", "--total", "30")

    command = cli.translate_sale(args, walk_in_name="Walk-in Customer")

    assert command.customer_name == "Walk-in Customer"
    assert command.amount_received == Decimal("0")
    assert [(line.inventory_item_id, line.quantity, line.unit) for line in command.items] == [
        ("I1", 2, StockUnit.LOOSE),
        ("I2", 1, StockUnit.PACK),
    ]


def test_translate_payment_returns_payment_command():
    args = _parse("payment", "--kind", "distributor", "--account-id", "DIST-1", "--amount", "99.5")

    assert cli.translate_payment(args) == core_logic.PaymentCommand(
        kind=AccountKind.DISTRIBUTOR, account_id="DIST-1", amount=Decimal("99.5")
    )


def test_translate_open_account_returns_opening_command():
    args = _parse("open-account", "--kind", "customer", "--name", "Asha", "--phone", "1", "--balance", "-20",
                  "--as-of", "2024-01-01")

    command = cli.translate_open_account(args)

    assert command.kind is AccountKind.CUSTOMER
    assert command.opening_balance == Decimal("-20")
    assert command.as_of_date == "2024-01-01"


def test_translate_purchase_order_collects_lines():
    args = _parse("purchase-order", "--distributor", "Acme", "--line", "Paracetamol:20", "--status", "ordered")

    command = cli.translate_purchase_order(args)

    assert command.status is PurchaseOrderStatus.ORDERED
    assert command.items[0].quantity == 20


def test_translate_purchase_reads_csv(tmp_path):
    path = tmp_path / "bill.csv"
    path.write_text(INTAKE_CSV)
    args = _parse("purchase", "--supplier", "Acme", "--invoice-number", "77", "--items", str(path),
                  "--total", "122.20", "--purchase-order", "PO-1")

    command = cli.translate_purchase(args)

    assert len(command.items) == 2
    assert command.purchase_order_id == "PO-1"


# ---------------------------------------------------------------------------
# Runtime context and dispatch
# ---------------------------------------------------------------------------


def test_load_runtime_context_checks_schema(config_file, monkeypatch):
    checked = {}

    monkeypatch.setattr(core_logic, "ensure_schema_version", lambda context: checked.setdefault("ctx", context))

    context = cli.load_runtime_context(config_file)

    assert checked["ctx"] is context


def test_dispatch_command_handles_unknown_commands(context):
    args = argparse.Namespace(command="unknown")
    with pytest.raises(KeyError):
        cli.dispatch_command(context, args, {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_detects_duplicate_commands(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_sale_invokes_bll(context, monkeypatch):
    args = _parse("sale", "--item", "I1:1", "--total", "2")
    called = {}
    real_record_sale = core_logic.record_sale

    def fake_record(ctx, command):
        called["context"] = ctx
        called["command"] = command
        return real_record_sale(ctx, command)

    monkeypatch.setattr(cli.core_logic, "record_sale", fake_record)

    assert cli.run_sale(context, args) == 0
    assert called["context"] is context
    assert called["command"].customer_name == context.settings.walk_in_customer


def test_run_payment_against_unknown_account_raises(context):
    args = _parse("payment", "--kind", "customer", "--account-id", "nobody", "--amount", "1")

    with pytest.raises(core_logic.MissingReferenceError):
        cli.run_payment(context, args)


def test_run_stock_report_lists_low_stock(context, make_item):
    context.repository.inventory.extend([make_item("I1", stock=2), make_item("I2", stock=90)])
    stream = io.StringIO()

    cli.run_stock_report(context, _parse("stock", "--low"), stream=stream)

    assert stream.getvalue().splitlines() == ["I1\tParacetamol 500\tB1\t2"]


def test_run_balances_and_ledger_reports(context):
    opened = core_logic.record_account_opening(
        context,
        core_logic.AccountOpeningCommand(AccountKind.CUSTOMER, "Asha", Decimal("25"), "2024-01-01"),
    ).account
    balances = io.StringIO()
    ledger = io.StringIO()

    cli.run_balances_report(context, _parse("balances", "--kind", "customer"), stream=balances)
    cli.run_ledger_report(
        context, _parse("ledger", "--kind", "customer", "--account-id", opened.account_id), stream=ledger
    )

    assert balances.getvalue() == f"{opened.account_id}\tAsha\t25\n"
    assert ledger.getvalue().startswith("2024-01-01\topeningBalance\tOpening Balance\t25\t0\t25")


def test_run_export_writes_file(context, tmp_path):
    output = tmp_path / "out" / "backup.json"

    assert cli.run_export(context, _parse("export", "--output", str(output))) == 0
    assert '"schemaVersion"' in output.read_text(encoding="utf-8")


def test_run_import_requires_existing_file(context, tmp_path):
    with pytest.raises(FileNotFoundError):
        cli.run_import(context, _parse("import", "--input", str(tmp_path / "nope.json")))


# ---------------------------------------------------------------------------
# Error handling and persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.BusinessRuleViolation("invalid"), 2),
        (core_logic.MissingReferenceError("unknown"), 2),
        (FileNotFoundError("missing"), 3),
        (core_logic.PersistenceFailure(["inventory"]), 4),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert caplog.records


def test_persist_workbook_delegates_to_core(context, monkeypatch):
    called = {}
    monkeypatch.setattr(cli.core_logic, "persist_context", lambda ctx: called.setdefault("context", ctx))

    cli.persist_workbook(context)

    assert called["context"] is context


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_persists_after_write_commands(monkeypatch, context):
    parser = _stub_parser(command="sale")
    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, lambda *_: 0)}
    persisted = {}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", lambda ctx: persisted.setdefault("context", ctx))

    assert cli.main(["sale"]) == 0
    assert persisted["context"] is context


def test_main_skips_persistence_for_read_commands(monkeypatch, context):
    parser = _stub_parser(command="stock")
    command_table = {"stock": cli.CommandSpec("stock", "help", lambda _: parser, lambda *_: 0, mutates=False)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", lambda _: (_ for _ in ()).throw(AssertionError("should not persist")))

    assert cli.main(["stock"]) == 0


def test_main_handles_bll_errors_without_persisting(monkeypatch, context):
    parser = _stub_parser(command="payment")

    def execute(*_: object) -> int:
        raise core_logic.MissingReferenceError("Unknown customer id: X")

    command_table = {"payment": cli.CommandSpec("payment", "help", lambda _: parser, execute)}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", lambda _: (_ for _ in ()).throw(AssertionError("should not persist")))

    assert cli.main(["payment"]) == 2


def test_main_persists_applied_event_after_account_rollback(monkeypatch, context):
    parser = _stub_parser(command="sale")

    def execute(*_: object) -> int:
        raise core_logic.PartialCreationFailure("rolled back")

    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, execute)}
    persisted = {}

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", lambda ctx: persisted.setdefault("context", ctx))

    assert cli.main(["sale"]) == 2
    assert persisted["context"] is context


def test_main_reports_persistence_failures(monkeypatch, context):
    parser = _stub_parser(command="sale")
    command_table = {"sale": cli.CommandSpec("sale", "help", lambda _: parser, lambda *_: 0)}

    def failing_persist(_: core_logic.RuntimeContext) -> None:
        raise core_logic.PersistenceFailure(["customers"])

    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)
    monkeypatch.setattr(cli, "persist_workbook", failing_persist)

    assert cli.main(["sale"]) == 4


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stub_parser(command: str) -> argparse.ArgumentParser:
    """Create a stub parser that always returns the supplied command."""

    class _Stub(argparse.ArgumentParser):
        def parse_args(self, args: Iterable[str] | None = None, namespace: argparse.Namespace | None = None):  # type: ignore[override]
            return argparse.Namespace(command=command)

    return _Stub(prog="test")
