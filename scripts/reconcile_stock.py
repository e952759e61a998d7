#!/usr/bin/env python3
"""
Replay movement ledgers and compare them with stored stock quantities.

Prints one line per product.  Exits 1 when any product's replayed quantity
differs from its stored quantity or its ledger chain is broken.

Usage:
    python3 scripts/reconcile_stock.py                       # every product
    python3 scripts/reconcile_stock.py --product <uuid>      # one product
    python3 scripts/reconcile_stock.py --mismatches-only
    python3 scripts/reconcile_stock.py --release-hold <uuid> --actor <uuid>

The configuration comes from --config, $INVENTORY_CONFIG, or the packaged
defaults; $INVENTORY_DATABASE_URL overrides the database.
"""

import argparse
import sys
from uuid import UUID

from inventory_config import get_active_config
from inventory_kernel.domain.principal import Principal
from inventory_kernel.exceptions import InventoryKernelError
from inventory_services.wiring import build_operations


def _format(report) -> str:
    status = "OK" if report.matches else "MISMATCH"
    line = (
        f"{status:<9} {report.product_id}  projected={report.projected_quantity} "
        f"replayed={report.replayed_quantity} movements={report.movement_count}"
    )
    if report.broken_links:
        line += f" broken_links={len(report.broken_links)}"
    if report.on_hold:
        line += f"  HOLD: {report.hold_reason}"
    return line


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Reconcile stock projections against the ledger")
    parser.add_argument("--config", help="Path to an inventory configuration YAML file")
    parser.add_argument("--product", type=UUID, help="Reconcile a single product")
    parser.add_argument("--active-only", action="store_true", help="Skip retired products")
    parser.add_argument("--mismatches-only", action="store_true", help="Only print mismatches")
    parser.add_argument("--release-hold", type=UUID, metavar="PRODUCT", help="Release a product's integrity hold")
    parser.add_argument("--actor", type=UUID, help="Acting user id (required with --release-hold)")
    parser.add_argument("--role", default="inventory_manager", help="Role of the acting user")
    args = parser.parse_args(argv)

    operations = build_operations(get_active_config(args.config))

    if args.release_hold:
        if args.actor is None:
            parser.error("--release-hold requires --actor")
        principal = Principal(id=args.actor, roles=frozenset({args.role}))
        try:
            report = operations.release_integrity_hold(args.release_hold, principal)
        except InventoryKernelError as exc:
            print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 1
        print(_format(report))
        print("Hold released.")
        return 0

    try:
        if args.product:
            reports = [operations.reconcile_product(args.product)]
        else:
            reports = operations.reconcile_all(include_retired=not args.active_only)
    except InventoryKernelError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    mismatches = [r for r in reports if not r.matches]
    for report in reports:
        if report.matches and args.mismatches_only:
            continue
        print(_format(report))

    print(f"\n{len(reports)} product(s), {len(mismatches)} mismatch(es), "
          f"{sum(1 for r in reports if r.on_hold)} on hold")
    return 1 if mismatches else 0


if __name__ == "__main__":
    sys.exit(main())
