"""Unified CLI for herd management.

Herd data is read from a local snapshot (``.cache/herd.json``) written by
``rebanho sync``; commands that need it accept ``--refresh`` to fetch a new
snapshot first.
"""

import argparse
import asyncio
import getpass
import json
import sys
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

from rebanho.ai import gemini
from rebanho.analysis.reports import generate_comprehensive_report
from rebanho.core import units
from rebanho.core.auth import AuthError, Session, session_from_settings, sign_in_with_password
from rebanho.core.client import BackendError, RetryableError
from rebanho.core.config import CONFIG_INSTRUCTIONS, ConfigurationError, get_cache_dir, require_backend_config
from rebanho.data.areas import summarize_areas, unassigned_animals
from rebanho.data.export import export_animals_csv
from rebanho.data.livestock import (
    filter_animals,
    find_animal,
    format_lineage_tree,
    get_animal_lineage,
    get_offspring,
    summarize_herd,
)
from rebanho.data.models import Animal, AnimalStatus
from rebanho.storage.photos import UploadError
from rebanho.sync.reconcile import COLLECTIONS, HerdState, apply_snapshot
from rebanho.sync.store import HerdStore

SNAPSHOT_FILE = "herd.json"


class SyncError(Exception):
    """Raised when herd data could not be loaded from or saved to the backend."""


# =============================================================================
# Session and snapshot
# =============================================================================


async def get_session(args: argparse.Namespace) -> Session:
    """Pre-issued credentials from the environment, else an interactive sign-in."""
    require_backend_config()
    session = session_from_settings()
    if session is not None:
        return session
    email = args.email or input("E-mail: ")
    password = getpass.getpass("Senha: ")
    return await sign_in_with_password(email, password)


def snapshot_path(args: argparse.Namespace) -> Path:
    return Path(args.snapshot) if args.snapshot else get_cache_dir() / SNAPSHOT_FILE


def save_snapshot(state: HerdState, user_id: str, path: Path) -> dict:
    """Write all loaded collections to a JSON snapshot."""
    data = {
        "synced_at": datetime.now(UTC).isoformat(),
        "user_id": user_id,
    }
    for collection in COLLECTIONS:
        data[collection] = [
            record.model_dump(mode="json", by_alias=True, exclude_none=True) for record in state.records(collection)
        ]

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return data


def load_snapshot(path: Path) -> HerdState:
    """Read a snapshot written by save_snapshot."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    state = HerdState()
    for collection, (_, _, record_type) in COLLECTIONS.items():
        records = [record_type.model_validate(raw) for raw in data.get(collection, [])]
        state = apply_snapshot(state, collection, records)
    return state


async def refresh_store(store: HerdStore) -> HerdState:
    """Load every collection, failing when any of them could not be fetched."""
    state = await store.refresh()
    if state.error:
        raise SyncError(state.error)
    return state


async def fetch_snapshot(args: argparse.Namespace) -> HerdState:
    """Fetch all collections and save them. The saved snapshot is kept on failure."""
    session = await get_session(args)
    store = HerdStore(session.user, session.id_token)
    print("Fetching herd data...")
    state = await refresh_store(store)
    path = snapshot_path(args)
    save_snapshot(state, session.user.uid, path)
    print(f"Snapshot saved to: {path}")
    return state


async def load_herd(args: argparse.Namespace) -> HerdState:
    path = snapshot_path(args)
    if getattr(args, "refresh", False) or not path.exists():
        return await fetch_snapshot(args)
    return load_snapshot(path)


# =============================================================================
# Commands
# =============================================================================


async def cmd_sync(args: argparse.Namespace) -> None:
    print("=" * 70)
    print("Herd Sync")
    print("=" * 70)
    state = await fetch_snapshot(args)
    print(f"\nAnimals: {len(state.animals)}")
    print(f"Calendar events: {len(state.calendar_events)}")
    print(f"Tasks: {len(state.tasks)}")
    print(f"Management areas: {len(state.management_areas)}")

    summary = summarize_herd(state.animals)
    if summary["avg_weight_kg"] is not None:
        print(f"Average weight (active): {units.format_weight(summary['avg_weight_kg'])}")


async def cmd_export_csv(args: argparse.Namespace) -> None:
    state = await load_herd(args)
    animals = filter_animals(
        state.animals,
        search=args.search or "",
        medication=args.medication or "",
        reason=args.reason or "",
        status=args.status or "",
    )
    output_dir = Path(args.output) if args.output else Path.cwd()
    path = export_animals_csv(animals, output_dir)
    print(f"Exported {len(animals)} animals to: {path}")


def _print_report(report: dict) -> None:
    sanitary = report["sanitary"]
    reproductive = report["reproductive"]

    print("\n--- Sanitary ---")
    if sanitary["top_treated_animals"]:
        print(f"{'Brinco':<12} {'Nome':<20} {'Tratamentos':>11}")
        print("-" * 45)
        for a in sanitary["top_treated_animals"]:
            print(f"{a['brinco']:<12} {a['nome']:<20} {a['treatment_count']:>11}")
        print("\nMedications:")
        for m in sanitary["medication_usage"]:
            print(f"  {m['label']:<30} {m['value']:>4}")
        print("\nBy month:")
        for month in sanitary["seasonal_analysis"]:
            print(f"  {month['label']:<10} {month['value']:>4}")
    print(f"\n{sanitary['recommendations']}")

    print("\n--- Reproductive ---")
    if reproductive["performance_data"]:
        print(f"{'Matriz':<12} {'Crias':>6} {'Nasc.':>8} {'Desmame':>8} {'Sobreano':>9}")
        print("-" * 47)
        for d in reproductive["performance_data"]:
            cols = [d["avg_birth_weight"], d["avg_weaning_weight"], d["avg_yearling_weight"]]
            birth, weaning, yearling = (f"{v:.1f}" if v is not None else "-" for v in cols)
            print(f"{d['dam_brinco']:<12} {d['offspring_count']:>6} {birth:>8} {weaning:>8} {yearling:>9}")
    print(f"\n{reproductive['recommendations']}")


async def cmd_report(args: argparse.Namespace) -> None:
    state = await load_herd(args)
    end = date.fromisoformat(args.end) if args.end else date.today()
    start = date.fromisoformat(args.start) if args.start else end - timedelta(days=365)

    report = await generate_comprehensive_report(state.animals, start, end, use_ai=args.ai)
    if args.json:
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return

    print("=" * 70)
    print(f"Herd Report ({start.strftime('%d/%m/%Y')} - {end.strftime('%d/%m/%Y')})")
    print("=" * 70)
    _print_report(report)


async def cmd_areas(args: argparse.Namespace) -> None:
    state = await load_herd(args)
    occupancy = summarize_areas(state.animals, state.management_areas)
    if args.json:
        print(json.dumps(occupancy, indent=2, ensure_ascii=False))
        return

    print(f"\n{'Area':<25} {'Size':>10} {'Animals':>8} {'Weight':>12} {'Density':>12}")
    print("-" * 71)
    for area in occupancy.values():
        print(
            f"{area['area_name']:<25} {units.format_area(area['area_ha']):>10} {area['animal_count']:>8} "
            f"{units.format_weight(area['total_weight_kg'], 0):>12} {units.format_density(area['density_kg_ha']):>12}"
        )

    loose = unassigned_animals(state.animals, state.management_areas)
    if loose:
        print(f"\nActive animals without an area: {len(loose)}")


async def cmd_lineage(args: argparse.Namespace) -> None:
    state = await load_herd(args)
    animal = find_animal(state.animals, args.id)
    if args.offspring:
        offspring = get_offspring(state.animals, animal)
        for child in offspring:
            print(f"{child.brinco:<12} {child.nome or '':<20} {child.data_nascimento.strftime('%d/%m/%Y')}")
        if not offspring:
            print("No offspring found")
        return

    lineage = get_animal_lineage(state.animals, animal, generations=args.generations)
    if args.json:
        print(json.dumps(lineage, indent=2, ensure_ascii=False))
    else:
        print(format_lineage_tree(lineage))


async def cmd_structure_medication(args: argparse.Namespace) -> None:
    result = await gemini.structure_medication_text(args.text)
    print(json.dumps(result, indent=2, ensure_ascii=False))


async def cmd_structure_animal(args: argparse.Namespace) -> None:
    result = await gemini.structure_animal_text(args.text)
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))


def _print_progress(sent: int, total: int) -> None:
    pct = sent * 100 // total if total else 100
    print(f"\r  Uploading... {pct}%", end="", flush=True)


async def cmd_upload_photo(args: argparse.Namespace) -> None:
    session = await get_session(args)
    store = HerdStore(session.user, session.id_token)
    state = await refresh_store(store)
    animal: Animal = find_animal(state.animals, args.id)

    file_path = Path(args.file)
    try:
        url = await store.add_photo(animal.id, file_path.read_bytes(), file_path.name, on_progress=_print_progress)
    except (BackendError, RetryableError) as e:
        print()
        raise SyncError(store.state.error or str(e)) from e
    print(f"\nPhoto added to {animal.label}: {url}")


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Herd management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rebanho sync                                 Download all herd data to .cache/herd.json
  rebanho export-csv --status Ativo            Export active animals to CSV
  rebanho export-csv --medication Ivermectina  Export animals treated with a medication
  rebanho report --start 2024-01-01 --ai       Sanitary and reproductive report
  rebanho areas                                Stocking density by management area
  rebanho lineage 1023                         Genealogy tree of an animal
  rebanho structure-animal "brinco 55, fêmea hereford nascida ontem"
  rebanho upload-photo 1023 foto.jpg           Add a photo to an animal
""",
    )
    parser.add_argument("--email", help="Sign-in e-mail (when no pre-issued token is configured)")
    parser.add_argument("--snapshot", help="Snapshot file (default: .cache/herd.json)")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("sync", help="Download all collections to the local snapshot")

    export_parser = subparsers.add_parser("export-csv", help="Export animals to CSV")
    export_parser.add_argument("--search", help="Tag (brinco) or name contains this text")
    export_parser.add_argument("--medication", help="Treated with this medication")
    export_parser.add_argument("--reason", help="Treated for this reason")
    export_parser.add_argument("--status", choices=[s.value for s in AnimalStatus], help="Filter by status")
    export_parser.add_argument("--output", "-o", help="Output directory (default: current directory)")
    export_parser.add_argument("--refresh", action="store_true", help="Fetch a fresh snapshot first")

    report_parser = subparsers.add_parser("report", help="Sanitary and reproductive report")
    report_parser.add_argument("--start", help="First day (YYYY-MM-DD, default: one year before end)")
    report_parser.add_argument("--end", help="Last day (YYYY-MM-DD, default: today)")
    report_parser.add_argument("--ai", action="store_true", help="AI-written recommendations")
    report_parser.add_argument("--json", action="store_true", help="Output as JSON")
    report_parser.add_argument("--refresh", action="store_true", help="Fetch a fresh snapshot first")

    areas_parser = subparsers.add_parser("areas", help="Occupancy of management areas")
    areas_parser.add_argument("--json", action="store_true", help="Output as JSON")
    areas_parser.add_argument("--refresh", action="store_true", help="Fetch a fresh snapshot first")

    lineage_parser = subparsers.add_parser("lineage", help="Show animal lineage")
    lineage_parser.add_argument("id", help="Animal id, tag (brinco) or name")
    lineage_parser.add_argument("--generations", type=int, default=3, help="Generations to show")
    lineage_parser.add_argument("--offspring", action="store_true", help="List offspring instead")
    lineage_parser.add_argument("--json", action="store_true", help="Output as JSON")
    lineage_parser.add_argument("--refresh", action="store_true", help="Fetch a fresh snapshot first")

    med_parser = subparsers.add_parser("structure-medication", help="Structure a spoken medication record")
    med_parser.add_argument("text", help="Transcript")

    animal_parser = subparsers.add_parser("structure-animal", help="Structure a spoken animal registration")
    animal_parser.add_argument("text", help="Transcript")

    photo_parser = subparsers.add_parser("upload-photo", help="Upload a photo of an animal")
    photo_parser.add_argument("id", help="Animal id, tag (brinco) or name")
    photo_parser.add_argument("file", help="Image file")

    return parser


COMMANDS = {
    "sync": cmd_sync,
    "export-csv": cmd_export_csv,
    "report": cmd_report,
    "areas": cmd_areas,
    "lineage": cmd_lineage,
    "structure-medication": cmd_structure_medication,
    "structure-animal": cmd_structure_animal,
    "upload-photo": cmd_upload_photo,
}


async def cli_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    try:
        await command(args)
    except ConfigurationError:
        print(CONFIG_INSTRUCTIONS)
        return 1
    except (
        AuthError,
        BackendError,
        RetryableError,
        SyncError,
        UploadError,
        gemini.AIClientError,
        gemini.AIServiceError,
        ValueError,
    ) as e:
        print(f"Error: {e}")
        return 1
    return 0


def cli() -> None:
    """CLI entry point."""
    sys.exit(asyncio.run(cli_main()))


if __name__ == "__main__":
    cli()
