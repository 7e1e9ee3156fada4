"""Integration tests describing end-to-end pharmacy ledger workflows.

These scenarios exercise the event processor against a real workbook and
drive the CLI entry point the way a shop assistant's scripts would.
"""

from __future__ import annotations

import json
from decimal import Decimal

from pharmacy_ledger import cli, core_logic, data_manager
from pharmacy_ledger.constants import AccountKind, LedgerEntryType, PurchaseOrderStatus
from pharmacy_ledger.data_manager import PurchaseLine, PurchaseReturnLine, SaleLine


def _line(name, batch, quantity, **overrides):
    values = dict(name=name, batch=batch, quantity=quantity, purchase_price=Decimal("10"), mrp=Decimal("15"))
    values.update(overrides)
    return PurchaseLine(**values)


def test_purchase_sale_and_payment_survive_reload(runtime_context):
    """Stock in, bill a credit sale, take payment, persist, and reload."""

    context = runtime_context

    purchase = core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand(
            supplier="Acme Pharma",
            invoice_number="A-1",
            items=(_line("Paracetamol", "B1", 2, pack_type="10's strip"),),
            total_amount=Decimal("200"),
            date="2024-01-02",
        ),
    )
    item_id = context.repository.inventory[0].item_id
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(
            customer_name="Asha Rao",
            customer_phone="9998887770",
            items=(SaleLine(item_id, "Paracetamol", 4),),
            total=Decimal("60"),
            amount_received=Decimal("20"),
            date="2024-01-03",
            invoice_id="INV-1",
        ),
    )
    core_logic.record_payment(
        context,
        core_logic.PaymentCommand(AccountKind.CUSTOMER, sale.account.account_id, Decimal("15"), "2024-01-04"),
    )
    core_logic.persist_context(context)

    reloaded = core_logic.refresh_context(context)

    assert reloaded.repository.inventory[0].stock == 16
    customer = core_logic.get_account(reloaded, AccountKind.CUSTOMER, sale.account.account_id)
    assert [entry.balance for entry in customer.ledger] == [Decimal("60"), Decimal("40"), Decimal("25")]
    distributor = core_logic.get_account(reloaded, AccountKind.DISTRIBUTOR, purchase.account.account_id)
    assert distributor.current_balance == Decimal("200")
    assert reloaded.repository.transactions[0].customer_id == customer.account_id
    assert reloaded.repository.purchases[0].items[0].pack_type == "10's strip"


def test_purchase_order_lifecycle(runtime_context):
    context = runtime_context
    order = core_logic.record_purchase_order(
        context,
        core_logic.PurchaseOrderCommand("Acme Pharma", (data_manager.PurchaseOrderLine("Cough Syrup", 5),),
                                        PurchaseOrderStatus.ORDERED),
    ).header
    other = core_logic.record_purchase_order(
        context, core_logic.PurchaseOrderCommand("Acme Pharma", (), PurchaseOrderStatus.ORDERED)
    ).header

    core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand("Acme Pharma", "A-2", (_line("Cough Syrup", "C1", 5),), Decimal("50"),
                                   purchase_order_id=order.order_id, date="2024-02-01"),
    )
    core_logic.persist_context(context)
    reloaded = core_logic.refresh_context(context)

    statuses = {po.order_id: po.status for po in reloaded.repository.purchase_orders}
    assert statuses[order.order_id] is PurchaseOrderStatus.RECEIVED
    assert statuses[other.order_id] is PurchaseOrderStatus.ORDERED


def test_purchase_return_flow(runtime_context):
    context = runtime_context
    core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand("Acme Pharma", "A-3", (_line("Amoxicillin", "X1", 20),), Decimal("400"),
                                   date="2024-03-01"),
    )
    item_id = context.repository.inventory[0].item_id

    result = core_logic.record_purchase_return(
        context,
        core_logic.PurchaseReturnCommand("acme pharma", (PurchaseReturnLine(item_id, "Amoxicillin", 3),),
                                         Decimal("60"), date="2024-03-05"),
    )

    assert context.repository.inventory[0].stock == 17
    assert result.account.ledger[-1].entry_type is LedgerEntryType.RETURN
    assert result.account.current_balance == Decimal("340")


def test_workbook_backup_round_trip(runtime_context, config_factory):
    context = runtime_context
    core_logic.record_account_opening(
        context,
        core_logic.AccountOpeningCommand(AccountKind.DISTRIBUTOR, "Acme Pharma", Decimal("-75"), "2024-01-01",
                                         gst_number="29ABC"),
    )
    core_logic.record_bulk_intake(context, core_logic.BulkIntakeCommand((_line("Gauze", "G1", 12),)))
    core_logic.persist_context(context)
    backup = core_logic.export_backup(context)

    other = core_logic.load_runtime_context(config_factory(identity="clerk@example.com").config_path)
    core_logic.import_backup(other, backup)

    assert other.repository.snapshot() == context.repository.snapshot()
    assert json.loads(core_logic.export_backup(other)) == json.loads(backup)


def test_cli_purchase_sale_and_reports_flow(config_factory, tmp_path, capsys):
    bundle = config_factory()
    config = str(bundle.config_path)
    bill = tmp_path / "bill.csv"
    bill.write_text(
        "name,batch,expiry,quantity,purchasePrice,mrp,gstPercent,hsnCode\n"
        "Paracetamol,B1,2026-06,30,1,2,12,3004\n"
    )

    assert cli.main(["--config", config, "purchase", "--supplier", "Acme Pharma", "--invoice-number", "77",
                     "--items", str(bill), "--total", "30", "--date", "2024-01-02"]) == 0
    context = core_logic.load_runtime_context(bundle.config_path)
    item_id = context.repository.inventory[0].item_id
    distributor_id = context.repository.distributors[0].account_id

    assert cli.main(["--config", config, "sale", "--customer-name", "Asha", "--phone", "1",
                     "--item", f"{item_id}:5", "--total", "10", "--date", "2024-01-03"]) == 0
    assert cli.main(["--config", config, "payment", "--kind", "distributor", "--account-id", distributor_id,
                     "--amount", "12", "--date", "2024-01-04"]) == 0
    capsys.readouterr()

    assert cli.main(["--config", config, "stock"]) == 0
    assert cli.main(["--config", config, "balances", "--kind", "distributor"]) == 0
    output = capsys.readouterr().out

    assert f"{item_id}\tParacetamol\tB1\t25" in output
    assert f"{distributor_id}\tAcme Pharma\t18" in output


def test_cli_unknown_payment_account_exits_with_rule_code(config_factory):
    config = str(config_factory().config_path)

    assert cli.main(["--config", config, "payment", "--kind", "customer", "--account-id", "ghost",
                     "--amount", "5"]) == 2


def test_cli_missing_config_exits_with_not_found_code(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "stock"]) == 3


def test_cli_export_and_import_flow(config_factory, tmp_path):
    source = config_factory()
    target = config_factory(identity="second@example.com")
    backup = tmp_path / "backup.json"

    assert cli.main(["--config", str(source.config_path), "open-account", "--kind", "customer",
                     "--name", "Asha", "--balance", "40", "--as-of", "2024-01-01"]) == 0
    assert cli.main(["--config", str(source.config_path), "export", "--output", str(backup)]) == 0
    assert cli.main(["--config", str(target.config_path), "import", "--input", str(backup)]) == 0

    restored = core_logic.load_runtime_context(target.config_path)
    assert [account.name for account in restored.repository.customers] == ["Asha"]
    assert restored.repository.customers[0].current_balance == Decimal("40")
