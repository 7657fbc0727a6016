"""ReturnDesk CLI: operator tool for the return workflow.

Usage:
    python -m cli slots 560001 2026-10-21
    python -m cli list --status pending --search headphones
    python -m cli stats
    python -m cli show <return-id>
    python -m cli approve <return-id> --notes "Photos confirm damage"
    python -m cli reject <return-id> --notes "Outside return window"
    python -m cli schedule-pickup <return-id> --name "Asha Rao" --phone 9876543210 \\
        --address "12 MG Road" --city Bengaluru --state Karnataka --pincode 560001 \\
        --date 2026-10-21 --slot "9:00 AM - 12:00 PM"
    python -m cli start-processing <return-id>
    python -m cli complete <return-id> --amount 1499.00 --method UPI
    python -m cli archive <return-id>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from decimal import Decimal

from returndesk.config import get_settings
from returndesk.errors import ReturnError
from returndesk.services.return_queries import ReturnQueries
from returndesk.services.returns import PickupRequest, ReturnFilter, ReturnRequest, ReturnStatus
from returndesk.services.workflow import ReturnWorkflow, build_workflow


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="returndesk-cli",
        description="ReturnDesk CLI",
    )
    parser.add_argument("--actor", default="cli", help="Operator recorded in the audit trail")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    sub = parser.add_subparsers(dest="command", help="Command")

    # ── Reads ────────────────────────────────────────────
    slots = sub.add_parser("slots", help="Available pickup slots")
    slots.add_argument("pincode", help="6-digit pincode")
    slots.add_argument("date", type=date.fromisoformat, help="Pickup date (YYYY-MM-DD)")

    lst = sub.add_parser("list", help="List return requests")
    lst.add_argument("--status", choices=[s.value for s in ReturnStatus])
    lst.add_argument("--search", help="Match title, customer, reason, id or order")
    lst.add_argument("--from", dest="date_from", type=date.fromisoformat)
    lst.add_argument("--to", dest="date_to", type=date.fromisoformat)
    lst.add_argument("--archived", action="store_true", help="Include archived requests")
    lst.add_argument("--sort", default="requested_at", choices=ReturnFilter.SORT_FIELDS)
    lst.add_argument("--asc", action="store_true", help="Oldest first")

    sub.add_parser("stats", help="Counts by status and refund total")

    show = sub.add_parser("show", help="Show one return request")
    show.add_argument("id")

    # ── Transitions ──────────────────────────────────────
    approve = sub.add_parser("approve", help="Approve a pending return")
    approve.add_argument("id")
    approve.add_argument("--notes")
    approve.add_argument("--amount", type=Decimal, help="Refund amount to record")
    approve.add_argument("--method", help="Refund method to record")

    reject = sub.add_parser("reject", help="Reject a pending return")
    reject.add_argument("id")
    reject.add_argument("--notes")

    pickup = sub.add_parser("schedule-pickup", help="Book a courier pickup")
    pickup.add_argument("id")
    pickup.add_argument("--name", required=True)
    pickup.add_argument("--phone", required=True)
    pickup.add_argument("--address", required=True)
    pickup.add_argument("--city", required=True)
    pickup.add_argument("--state", required=True)
    pickup.add_argument("--pincode", required=True)
    pickup.add_argument("--date", required=True, type=date.fromisoformat)
    pickup.add_argument("--slot", required=True)
    pickup.add_argument("--instructions")
    pickup.add_argument("--notes")

    processing = sub.add_parser("start-processing", help="Item received, start processing")
    processing.add_argument("id")
    processing.add_argument("--notes")
    processing.add_argument("--amount", type=Decimal, help="Refund amount to record")
    processing.add_argument("--method", help="Refund method to record")

    complete = sub.add_parser("complete", help="Issue the refund and close the return")
    complete.add_argument("id")
    complete.add_argument("--amount", type=Decimal)
    complete.add_argument("--method")
    complete.add_argument("--notes")

    archive = sub.add_parser("archive", help="Hide a return from default listings")
    archive.add_argument("id")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    workflow = build_workflow(settings)
    try:
        asyncio.run(_run_and_drain(args, workflow))
    except ReturnError as e:
        print(f"❌ {e.code}: {e.message}", file=sys.stderr)
        sys.exit(1)


async def _run_and_drain(args, workflow: ReturnWorkflow) -> None:
    try:
        await run(args, workflow)
    finally:
        await workflow.aclose()


async def run(args, workflow: ReturnWorkflow) -> None:
    queries = ReturnQueries(workflow.store)
    actor = args.actor

    if args.command == "slots":
        available = await workflow.list_available_slots(args.pincode, args.date)
        if not available:
            print(f"No pickup slots for {args.pincode} on {args.date}")
        for slot in available:
            print(slot)

    elif args.command == "list":
        flt = ReturnFilter(
            status=ReturnStatus(args.status) if args.status else None,
            search=args.search,
            date_from=args.date_from,
            date_to=args.date_to,
            include_archived=args.archived,
            sort_by=args.sort,
            descending=not args.asc,
        )
        records = await queries.list(flt)
        if args.json:
            print(json.dumps([_as_dict(r) for r in records], indent=2, default=str))
            return
        print(f"{'ID':<38} {'Status':<11} {'Total':>10}  {'Customer':<25} Product")
        print("-" * 100)
        for r in records:
            print(f"{r.id:<38} {r.status.value:<11} {r.total_price:>10}  {r.requested_by:<25} {r.product_title}")

    elif args.command == "stats":
        print(json.dumps(await queries.stats(), indent=2, default=str))

    elif args.command == "show":
        _print(await queries.get(args.id))

    elif args.command == "approve":
        _print(await workflow.approve(args.id, args.notes, args.amount, args.method, actor=actor))

    elif args.command == "reject":
        _print(await workflow.reject(args.id, args.notes, actor=actor))

    elif args.command == "schedule-pickup":
        request = PickupRequest(
            customer_name=args.name,
            phone=args.phone,
            address=args.address,
            city=args.city,
            state=args.state,
            pincode=args.pincode,
            pickup_date=args.date,
            time_slot=args.slot,
            special_instructions=args.instructions,
        )
        _print(await workflow.schedule_pickup(args.id, request, args.notes, actor=actor))

    elif args.command == "start-processing":
        _print(await workflow.start_processing(args.id, args.notes, args.amount, args.method, actor=actor))

    elif args.command == "complete":
        _print(await workflow.complete(args.id, args.amount, args.method, args.notes, actor=actor))

    elif args.command == "archive":
        _print(await workflow.archive(args.id, actor=actor))


def _as_dict(record: ReturnRequest) -> dict:
    return {
        "id": record.id,
        "order_id": record.order_id,
        "product_title": record.product_title,
        "status": record.status.value,
        "total_price": record.total_price,
        "refund_amount": record.refund_amount,
        "refund_method": record.refund_method,
        "requested_by": record.requested_by,
        "requested_at": record.requested_at,
        "pickup": record.pickup.to_dict() if record.pickup else None,
        "archived_at": record.archived_at,
        "version": record.version,
        "history": [e.to_dict() for e in record.history],
    }


def _print(record: ReturnRequest) -> None:
    print(json.dumps(_as_dict(record), indent=2, default=str))


if __name__ == "__main__":
    main()
