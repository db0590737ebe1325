#!/usr/bin/env python3
"""
Seed the database with equipment groups, units and a few receipts.

Recreates the schema, registers groups and units through the public
service, then walks one borrow receipt through approve and scan-in so the
read side has something to show.

Usage:
    python3 scripts/seed_data.py
    python3 scripts/seed_data.py --database-url sqlite:///demo.db --units 8
    python3 scripts/seed_data.py --config engine.yaml --keep
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

GROUPS = (
    ("PROJ-01", "Classroom projector"),
    ("CAM-02", "Document camera"),
    ("LAP-03", "Loaner laptop"),
)
ROOMS = ("R-101", "R-102", "R-201")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--database-url", help="Overrides the configured URL")
    parser.add_argument(
        "--units", type=int, default=5, help="Units per group (default: 5)"
    )
    parser.add_argument(
        "--keep", action="store_true", help="Do not drop existing tables"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from dataclasses import replace

    from equipment_kernel.config import load_settings
    from equipment_kernel.db.engine import (
        create_tables,
        drop_tables,
        get_session_factory,
        init_engine_from_settings,
    )
    from equipment_kernel.domain.dtos import GroupLineSpec
    from equipment_kernel.exceptions import EquipmentKernelError
    from equipment_kernel.services.reservation_service import (
        EquipmentReservationService,
    )
    from equipment_kernel.services.transaction_coordinator import (
        TransactionCoordinator,
    )

    settings = load_settings(args.config)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)

    print(f"  [1/4] Connecting to {settings.database_url} ...")
    init_engine_from_settings(settings)

    print("  [2/4] Creating schema ...")
    if not args.keep:
        drop_tables()
    create_tables()

    service = EquipmentReservationService(
        TransactionCoordinator(get_session_factory(), settings=settings)
    )

    print(f"  [3/4] Registering {len(GROUPS)} groups x {args.units} units ...")
    try:
        for code, name in GROUPS:
            service.register_group(code, name, actor_code="seed")
            for i in range(1, args.units + 1):
                service.add_unit(
                    f"{code}-SEED-{i:03d}",
                    code,
                    actor_code="seed",
                    room_id=ROOMS[i % len(ROOMS)],
                )

        print("  [4/4] Creating a sample borrow receipt ...")
        receipt_id = service.create_borrow_receipt(
            "U-001",
            ROOMS[0],
            [GroupLineSpec("PROJ-01", min(2, args.units))],
            note="Seeded sample",
        )
        service.approve(receipt_id, "U-900")
        first = service.find_available_units("PROJ-01", limit=1)
        if first:
            service.scan_in(receipt_id, first[0].serial_number, actor_code="U-900")
    except EquipmentKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    info = service.get_receipt(receipt_id)
    print()
    print(f"  Done. Sample receipt {info.receipt_number} is '{info.status.value}'.")
    for group in service.list_groups():
        print(f"    {group.code:<8} {group.name:<22} available={group.available}")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
