#!/usr/bin/env python3
"""AV BOQ command line.

Subcommands:
  generate  Requirements -> AI -> BOQ workbook
  export    Saved AI response (JSON array of rooms) -> BOQ workbook
  price     Print room and project totals for a saved AI response

Usage:
  python scripts/boq_cli.py generate --requirements "Boardroom for 12, VC, wireless sharing" --project "HQ Fit-out"
  python scripts/boq_cli.py export boq.json --currency INR --margin 15 --tax-policy split
  python scripts/boq_cli.py price boq.json --no-rates
"""

import argparse
import asyncio
import datetime as dt
import json
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import structlog

from config.errors import BoqError
from config.settings import load_settings
from models.client_details import SUPPORTED_CURRENCIES, ClientDetails
from services.project_session import ProjectSession
from utils.log_config import configure_logging
from utils.report import print_pricing_report
from validators.boq_validator import parse_rooms_response

logger = structlog.get_logger()


def _add_pricing_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--currency", help=f"Proposal currency ({', '.join(SUPPORTED_CURRENCIES)} or any ISO code)")
    parser.add_argument("--margin", help="Global margin percent for items without an override")
    parser.add_argument("--tax-policy", choices=["flat", "split"], help="Tax presentation")
    parser.add_argument("--no-rates", action="store_true", help="Skip the exchange rate lookup (rate 1.0)")


def _add_project_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--project", default="", help="Project name")
    parser.add_argument("--client", default="", help="Client name")
    parser.add_argument("--prepared-by", default="", help="Proposal author")
    parser.add_argument("--location", default="", help="Project location")
    parser.add_argument("--out", help="Output directory (defaults to EXPORT_DIR)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate, price and export AV Bills of Quantities")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate a BOQ with the AI and export it")
    source = generate.add_mutually_exclusive_group(required=True)
    source.add_argument("--requirements", help="Free-text room requirements")
    source.add_argument("--answers", help="JSON file of questionnaire answers")
    generate.add_argument("--room", default="Room 1", help="Room name")
    generate.add_argument("--refine", help="Refinement instruction applied after generation")
    _add_project_args(generate)
    _add_pricing_args(generate)

    export = subparsers.add_parser("export", help="Export a saved AI response to a workbook")
    export.add_argument("input", help="JSON file holding an array of rooms")
    _add_project_args(export)
    _add_pricing_args(export)

    price = subparsers.add_parser("price", help="Print totals for a saved AI response")
    price.add_argument("input", help="JSON file holding an array of rooms")
    _add_pricing_args(price)

    return parser


def build_session(args: argparse.Namespace) -> ProjectSession:
    overrides = {}
    if args.tax_policy:
        overrides["tax_policy"] = args.tax_policy
    settings = load_settings(**overrides)

    client_details = ClientDetails(
        client_name=getattr(args, "client", ""),
        project_name=getattr(args, "project", ""),
        prepared_by=getattr(args, "prepared_by", ""),
        location=getattr(args, "location", ""),
        currency=settings.default_currency,
    )
    session = ProjectSession(settings=settings, client_details=client_details)
    if args.currency:
        session.set_currency(args.currency)
    if args.margin is not None:
        session.set_global_margin(args.margin)
    return session


def load_saved_rooms(session: ProjectSession, input_path: str) -> None:
    text = Path(input_path).read_text(encoding="utf-8")
    result = parse_rooms_response(text)
    for issue in result.issues:
        print(f"Skipped {issue.describe()}", file=sys.stderr)
    session.import_rooms(result.rooms)


async def run_generate(session: ProjectSession, args: argparse.Namespace) -> Optional[Path]:
    room = session.add_room(args.room)
    if args.answers:
        answers = json.loads(Path(args.answers).read_text(encoding="utf-8"))
        session.update_answers(room.id, answers)
    else:
        room.requirements = args.requirements

    if not await session.generate_room(room.id):
        print(room.error or "Generation did not complete", file=sys.stderr)
        return None
    if args.refine and not await session.refine_room(room.id, args.refine):
        print(room.error or "Refinement did not complete", file=sys.stderr)
        return None

    for issue in session.last_issues.get(room.id, []):
        print(f"Skipped {issue}", file=sys.stderr)
    if not args.no_rates:
        await session.refresh_rates()
    return session.export(output_dir=args.out)


async def run(args: argparse.Namespace) -> int:
    session = build_session(args)

    if args.command == "generate":
        path = await run_generate(session, args)
        if path is None:
            return 1
        print(f"Wrote {path}")
        return 0

    load_saved_rooms(session, args.input)
    if not args.no_rates:
        await session.refresh_rates()

    if args.command == "price":
        labels = session.settings.tax_split_labels if session.settings.tax_policy == "split" else None
        print_pricing_report(session.project_pricing(), labels)
        return 0

    path = session.export(output_dir=args.out, generated_on=dt.date.today())
    print(f"Wrote {path}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        configure_logging(load_settings().log_level)
        return asyncio.run(run(args))
    except BoqError as e:
        logger.error("boq_cli_failed", command=args.command, code=e.code, error=e.message)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
