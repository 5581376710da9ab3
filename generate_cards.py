"""Export ID cards, badges, tickets or QR codes for registrants in the database.

    python generate_cards.py --team team-tokyo --out exports
    python generate_cards.py --ids r-001 r-002 --kind tickets
"""
import argparse
import asyncio
import logging
import os
import signal
from datetime import datetime

from jubilee.core.cancellation import CancelToken, GenerationCancelled
from jubilee.core.config import settings
from jubilee.core.database import SessionLocal
from jubilee.services.badge_compositor import build_compositor
from jubilee.services.card_generator import CardGeneratorService
from jubilee.services.errors import ExportError
from jubilee.services.pdf_export import CardPackager, archive_name, build_qr_archive
from jubilee.services.registrants import list_registrants, load_registrants_by_ids

KINDS = ("cards", "badges", "tickets", "qr")


def print_progress(completed: int, total: int) -> None:
    print(f"  → {completed}/{total}", end="\r" if completed < total else "\n", flush=True)


def load_selection(args):
    db = SessionLocal()
    try:
        if args.ids:
            return load_registrants_by_ids(db, args.ids)
        return list_registrants(db, team=args.team, role=args.role, confirmed_only=not args.include_unconfirmed)
    finally:
        db.close()


async def export(args, selection) -> str:
    os.makedirs(args.out, exist_ok=True)

    if args.kind == "qr":
        path = os.path.join(args.out, archive_name(f"{args.prefix}-qr-codes", datetime.now()))
        with open(path, "wb") as f:
            f.write(build_qr_archive(selection, settings.EVENT_NAME))
        return path

    generator = CardGeneratorService(build_compositor(settings), delay=settings.generation_delay)
    packager = CardPackager(generator, batch_size=settings.CARD_BATCH_SIZE)

    token = CancelToken()
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel)
    except NotImplementedError:
        pass

    if args.kind == "cards":
        valid, invalid = generator.validate_registrants(selection)
        for registrant, reason in invalid:
            print(f"• Skipped {registrant.id}: {reason}")
        result = await packager.generate_and_export_pdf(valid, on_progress=print_progress,
                                                        cancel_token=token, prefix=args.prefix)
    elif args.kind == "badges":
        result = await packager.export_badges_zip(selection, prefix=f"{args.prefix}-Badges",
                                                  on_progress=print_progress, cancel_token=token)
    else:
        result = await packager.export_tickets_zip(selection, prefix=f"{args.prefix}-Tickets",
                                                   on_progress=print_progress, cancel_token=token)

    for error in result.errors:
        print(f"✗ {error.user_id}: {error.message}")
    for batch in result.batches:
        if batch.skipped:
            print(f"• {batch.filename} skipped (no cards)")

    path = os.path.join(args.out, result.filename)
    with open(path, "wb") as f:
        f.write(result.content)
    print(f"✓ {result.success_count} generated, {len(result.errors)} failed")
    return path


def main():
    parser = argparse.ArgumentParser(description="Generate event cards from the registration database")
    parser.add_argument("--ids", nargs="*", help="registrant ids, in output order")
    parser.add_argument("--team", help="team id or name")
    parser.add_argument("--role", choices=("all", "organizer", "participant"), default="all")
    parser.add_argument("--include-unconfirmed", action="store_true")
    parser.add_argument("--kind", choices=KINDS, default="cards")
    parser.add_argument("--out", default="exports")
    parser.add_argument("--prefix", default="cards")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    selection = load_selection(args)
    if not selection:
        print("✗ No registrants matched the selection")
        raise SystemExit(1)

    print(f"Generating {args.kind} for {len(selection)} registrants")
    try:
        path = asyncio.run(export(args, selection))
    except GenerationCancelled as e:
        print(f"\n✗ {e}")
        raise SystemExit(130)
    except ExportError as e:
        print(f"✗ {e}")
        raise SystemExit(1)
    print(f"  → Saved to: {path}")


if __name__ == '__main__':
    main()
