#!/usr/bin/env python3
"""CLI entry point for icntrack package.

Usage:
    python -m icntrack census parse <file> [--db icntrack.db]
    python -m icntrack census apply <file> [--db icntrack.db]
    python -m icntrack bulk vax|abx <file> [--resident KEY] [--apply]
    python -m icntrack legacy <file> [--apply]
    python -m icntrack pack build <file> --target abt [--format auto] [--queue]
    python -m icntrack pack queue
    python -m icntrack pack apply [<pack.json> ...] [--index N ...]
    python -m icntrack flags [--today YYYY-MM-DD]
    python -m icntrack report [--today YYYY-MM-DD]
    python -m icntrack resident <resident_id> [--today YYYY-MM-DD]
    python -m icntrack stop-abx <resident_id> <course_id> <stop_date>
    python -m icntrack delete-vax|delete-abx <resident_id> <record_id>
    python -m icntrack ip add <resident_id> <onset_date> [--syndrome S] [--precautions P]
    python -m icntrack ip resolve <case_id> [--date YYYY-MM-DD]
    python -m icntrack ip delete <case_id>
    python -m icntrack ip list [--all]
    python -m icntrack detect-store | summary | reset --yes
    python -m icntrack init-config [--output icntrack.toml]
    python -m icntrack serve-mcp [--db icntrack.db]

Files may be given as ``-`` to read standard input.
"""

import argparse
import json
import sys
from contextlib import contextmanager
from datetime import date

DEFAULT_DB = "icntrack.db"
MAX_ERRORS_SHOWN = 10


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="icntrack",
        description="Infection-control tracker: census, vaccinations, antibiotics, infection cases.",
    )
    sub = parser.add_subparsers(dest="command")

    def common(p):
        p.add_argument("--db", default=DEFAULT_DB, help="SQLite database path")
        p.add_argument("--config", default="", help="Path to icntrack.toml config file")
        return p

    # --- census ---
    census_parser = sub.add_parser("census", help="Parse or apply a pasted census report")
    census_sub = census_parser.add_subparsers(dest="census_action")
    for action, help_text in (("parse", "Preview parsed residents"), ("apply", "Apply as current roster")):
        p = common(census_sub.add_parser(action, help=help_text))
        p.add_argument("file", help="Census text file")

    # --- bulk ---
    bulk_parser = sub.add_parser("bulk", help="Bulk paste vaccination or antibiotic rows")
    bulk_sub = bulk_parser.add_subparsers(dest="dataset")
    for ds in ("vax", "abx"):
        p = common(bulk_sub.add_parser(ds, help=f"Bulk {ds} rows"))
        p.add_argument("file", help="Pasted rows file")
        p.add_argument("--resident", default="", help="Resident key applied to every row")
        p.add_argument("--apply", action="store_true", help="Save the built records")

    # --- legacy ---
    legacy_parser = common(sub.add_parser("legacy", help="Detect and import a legacy JSON export"))
    legacy_parser.add_argument("file", help="Legacy JSON file")
    legacy_parser.add_argument("--apply", action="store_true", help="Merge into the store")

    # --- pack ---
    pack_parser = sub.add_parser("pack", help="Build, queue and apply import packs")
    pack_sub = pack_parser.add_subparsers(dest="pack_action")
    build_parser = common(pack_sub.add_parser("build", help="Build a pack from JSON/CSV/lines"))
    build_parser.add_argument("file", help="Upload file")
    build_parser.add_argument("--target", required=True, help="Dataset name, e.g. census, abt, vaccinations")
    build_parser.add_argument("--format", choices=["auto", "json", "csv", "lines"], default="auto")
    build_parser.add_argument("--source", default="", help="Provenance label")
    build_parser.add_argument("--output", default="", help="Write pack JSON to this file")
    build_parser.add_argument("--queue", action="store_true", help="Add the pack to the pending queue")
    common(pack_sub.add_parser("queue", help="List pending packs"))
    apply_parser = common(pack_sub.add_parser("apply", help="Apply pack files, or the pending queue"))
    apply_parser.add_argument("files", nargs="*", help="Pack JSON files (default: the queue)")
    apply_parser.add_argument("--index", type=int, action="append", help="Queue index to apply")

    # --- derived views ---
    for name, help_text in (("flags", "Active antibiotic courses with review flags"),
                            ("report", "Report snapshot")):
        p = common(sub.add_parser(name, help=help_text))
        p.add_argument("--today", default="", help="ISO date (default: today)")
    resident_parser = common(sub.add_parser("resident", help="Show one resident"))
    resident_parser.add_argument("resident_id")
    resident_parser.add_argument("--today", default="", help="ISO date (default: today)")

    # --- record operations ---
    stop_parser = common(sub.add_parser("stop-abx", help="Stop an antibiotic course"))
    stop_parser.add_argument("resident_id")
    stop_parser.add_argument("course_id")
    stop_parser.add_argument("stop_date")
    for name in ("delete-vax", "delete-abx"):
        p = common(sub.add_parser(name, help=f"Delete a {name.split('-')[1]} record"))
        p.add_argument("resident_id")
        p.add_argument("record_id")

    # --- infection cases ---
    ip_parser = sub.add_parser("ip", help="Add, resolve, delete or list infection cases")
    ip_sub = ip_parser.add_subparsers(dest="ip_action")
    ip_add = common(ip_sub.add_parser("add", help="Record a new infection case"))
    ip_add.add_argument("resident_id")
    ip_add.add_argument("onset_date")
    ip_add.add_argument("--syndrome", default="", help="UTI, Respiratory, GI, Skin, ...")
    ip_add.add_argument("--organism", default="")
    ip_add.add_argument("--precautions", default="", help="contact, droplet, airborne, EBP, standard")
    ip_add.add_argument("--notes", default="")
    ip_resolve = common(ip_sub.add_parser("resolve", help="Mark a case resolved"))
    ip_resolve.add_argument("case_id")
    ip_resolve.add_argument("--date", default="", help="Resolved date (default: today)")
    ip_delete = common(ip_sub.add_parser("delete", help="Delete a case"))
    ip_delete.add_argument("case_id")
    ip_list = common(ip_sub.add_parser("list", help="List infection cases"))
    ip_list.add_argument("--all", action="store_true", help="Include resolved cases")

    # --- store ---
    common(sub.add_parser("detect-store", help="Show which key holds the tracker state"))
    common(sub.add_parser("summary", help="Show store summary"))
    reset_parser = common(sub.add_parser("reset", help="Delete all stored data"))
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the reset")

    # --- init-config ---
    config_parser = sub.add_parser("init-config", help="Generate icntrack.toml config")
    config_parser.add_argument("--db", default=DEFAULT_DB, help="SQLite database path")
    config_parser.add_argument("--output", default="icntrack.toml", help="Config file output path")
    config_parser.add_argument("--facility", default="", help="Facility name")

    # --- serve-mcp ---
    mcp_parser = sub.add_parser("serve-mcp", help="Start MCP server")
    mcp_parser.add_argument("--db", default=DEFAULT_DB, help="SQLite database path")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    handlers = {
        "census": _handle_census,
        "bulk": _handle_bulk,
        "legacy": _handle_legacy,
        "pack": _handle_pack,
        "flags": _handle_flags,
        "report": _handle_report,
        "resident": _handle_resident,
        "stop-abx": _handle_stop_abx,
        "delete-vax": _handle_delete,
        "delete-abx": _handle_delete,
        "ip": _handle_ip,
        "detect-store": _handle_detect_store,
        "summary": _handle_summary,
        "reset": _handle_reset,
        "init-config": _handle_init_config,
        "serve-mcp": _handle_serve_mcp,
    }

    from icntrack.errors import IcnTrackError

    try:
        handlers[args.command](args)
    except IcnTrackError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


@contextmanager
def _open_tracker(args):
    from icntrack.config import TrackerConfig, load_config
    from icntrack.db import IcnDB
    from icntrack.tracker import Tracker

    config = load_config(args.config) if getattr(args, "config", "") else TrackerConfig()
    with IcnDB(args.db) as db:
        db.init_schema()
        yield Tracker(db, config)


def _read_input(path: str) -> str:
    from pathlib import Path

    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text()


def _read_json(path: str):
    from icntrack.errors import UploadParseError

    try:
        return json.loads(_read_input(path))
    except ValueError as e:
        raise UploadParseError(f"{path}: invalid JSON ({e})") from e


def _today(args) -> str:
    from icntrack.core.utils import coerce_date_iso
    from icntrack.errors import IcnTrackError

    if not args.today:
        return date.today().isoformat()
    today = coerce_date_iso(args.today)
    if not today:
        raise IcnTrackError(f"Invalid --today date: {args.today!r}")
    return today


def _print_import_result(added: int, skipped: int, dropped: int, errors: list[str]) -> None:
    """The three numbers every import reports, plus the first errors."""
    print(f"  Added:   {added}")
    print(f"  Skipped: {skipped}")
    print(f"  Dropped: {dropped} (duplicates)")
    print(f"  Errors:  {len(errors)}")
    for err in errors[:MAX_ERRORS_SHOWN]:
        print(f"    - {err}")
    if len(errors) > MAX_ERRORS_SHOWN:
        print(f"    ... and {len(errors) - MAX_ERRORS_SHOWN} more")


def _print_apply_result(result) -> None:
    for stats in result.applied:
        print(f"  {stats['dataset']:<15} +{stats['added']}")
    _print_import_result(result.added, result.skipped, result.dropped, result.errors)
    print(f"  Backup:  {result.backup_key}")
    print(f"  Store:   {result.store_key}")


def _handle_census(args):
    if args.census_action is None:
        print("Usage: icntrack census <parse|apply> <file>")
        sys.exit(1)

    with _open_tracker(args) as tracker:
        snapshot = tracker.parse_census(_read_input(args.file))
        print(f"Parsed {len(snapshot.residents)} residents (snapshot {snapshot.id})")
        for r in snapshot.residents:
            print(f"  {r.room:<8} {r.unit:<10} {r.display_name:<30} {r.id}")
        for w in snapshot.warnings:
            print(f"  Warning: {w}")
        if args.census_action == "apply":
            stats = tracker.apply_census(snapshot)
            print(
                f"Applied: {stats['added']} new, {stats['updated']} updated, "
                f"{stats['discharged']} discharged"
            )


def _handle_bulk(args):
    if args.dataset is None:
        print("Usage: icntrack bulk <vax|abx> <file> [--resident KEY] [--apply]")
        sys.exit(1)

    dataset = "vaccination" if args.dataset == "vax" else "antibiotic"
    with _open_tracker(args) as tracker:
        parsed = tracker.parse_bulk_rows(_read_input(args.file), dataset, args.resident)
        built = tracker.build_records(parsed.rows, dataset)
        errors = parsed.errors + built.errors
        print(f"Bulk {args.dataset}: {len(parsed.rows)} rows parsed, {len(built.items)} ready")
        if args.apply:
            saved = tracker.save_records(built.items)
            _print_import_result(saved, built.skipped + len(parsed.errors), 0, errors)
        else:
            for item in built.items:
                print(f"  {item.resident_id:<28} {json.dumps(item.to_dict())}")
            _print_import_result(0, built.skipped + len(parsed.errors), 0, errors)
            print("Preview only; re-run with --apply to save.")


def _handle_legacy(args):
    payload = _read_json(args.file)
    with _open_tracker(args) as tracker:
        result = tracker.detect_and_map_legacy(payload)
        print(f"Detected kind: {result.kind}")
        for name, count in result.counts().items():
            print(f"  {name:<16} {count}")
        print(f"  new residents    {len(result.new_resident_ids)}")
        if args.apply and result.kind != "unknown":
            _print_apply_result(tracker.import_legacy(result))
        else:
            for w in result.warnings[:MAX_ERRORS_SHOWN]:
                print(f"  Warning: {w}")


def _handle_pack(args):
    from icntrack.sources.upload import apply_queue, build_import_pack, enqueue_pack, read_queue

    if args.pack_action is None:
        print("Usage: icntrack pack <build|queue|apply> ...")
        sys.exit(1)

    with _open_tracker(args) as tracker:
        if args.pack_action == "build":
            pack = build_import_pack(
                _read_input(args.file), args.target, fmt=args.format, source=args.source
            )
            print(f"OK: {len(pack[args.target])} record(s) parsed for {args.target}.")
            if args.output:
                from pathlib import Path

                Path(args.output).write_text(json.dumps(pack, indent=2))
                print(f"Pack written to {args.output}")
            if args.queue:
                print(f"Queued ({enqueue_pack(tracker.store, pack)} pending)")
            if not args.output and not args.queue:
                print(json.dumps(pack, indent=2))
        elif args.pack_action == "queue":
            queue = read_queue(tracker.store)
            print(f"{len(queue)} pending pack(s)")
            for i, pack in enumerate(queue):
                datasets = [k for k, v in pack.items() if isinstance(v, list)]
                print(f"  [{i}] {pack.get('createdAt', '')[:19]}  {', '.join(datasets)}")
        else:
            tracker.init_state()
            if args.files:
                result = tracker.apply_packs_to_store([_read_json(f) for f in args.files])
            else:
                result = apply_queue(tracker.store, args.index)
            _print_apply_result(result)


def _handle_flags(args):
    with _open_tracker(args) as tracker:
        rows = tracker.antibiotic_flags(_today(args))
        print(f"{len(rows)} active antibiotic course(s) as of {_today(args)}")
        for r in rows:
            flag = "OVERDUE" if r["overdue"] else ("REVIEW" if r["review_due"] else "")
            print(
                f"  Day {r['day']:>3}  {flag:<8} {r['resident']:<28} {r['room']:<8} "
                f"{r['antibiotic']}"
            )


def _handle_report(args):
    with _open_tracker(args) as tracker:
        print(json.dumps(tracker.report(_today(args)), indent=2))


def _handle_resident(args):
    from icntrack.errors import IcnTrackError

    with _open_tracker(args) as tracker:
        summary = tracker.resident_summary(args.resident_id, _today(args))
        if summary is None:
            raise IcnTrackError(f"Resident not found: {args.resident_id}")
        print(json.dumps(summary, indent=2))


def _handle_stop_abx(args):
    with _open_tracker(args) as tracker:
        course = tracker.stop_antibiotic(args.resident_id, args.course_id, args.stop_date)
        print(f"Stopped {course.antibiotic} ({course.id}) on {course.stop_date}")


def _handle_delete(args):
    with _open_tracker(args) as tracker:
        if args.command == "delete-vax":
            deleted = tracker.delete_vaccine(args.resident_id, args.record_id)
        else:
            deleted = tracker.delete_antibiotic(args.resident_id, args.record_id)
    print("Deleted." if deleted else f"No record {args.record_id} for {args.resident_id}.")


def _handle_ip(args):
    if args.ip_action is None:
        print("Usage: icntrack ip <add|resolve|delete|list> ...")
        sys.exit(1)

    with _open_tracker(args) as tracker:
        if args.ip_action == "add":
            case = tracker.add_infection_case(
                args.resident_id, args.onset_date, syndrome=args.syndrome,
                organism=args.organism, precautions=args.precautions, notes=args.notes,
            )
            print(f"Added case {case.id} (onset {case.onset_date}, {case.precaution_type})")
        elif args.ip_action == "resolve":
            case = tracker.resolve_infection_case(args.case_id, args.date)
            print(f"Resolved {case.id} on {case.resolved_date}")
        elif args.ip_action == "delete":
            deleted = tracker.delete_infection_case(args.case_id)
            print("Deleted." if deleted else f"No infection case {args.case_id}.")
        else:
            cases = tracker.infection_cases(active_only=not args.all)
            residents = tracker.state().residents_by_id
            print(f"{len(cases)} infection case(s)")
            for c in cases:
                resident = residents.get(c.resident_id)
                name = resident.display_name if resident else c.resident_id
                print(
                    f"  {c.id:<16} {c.onset_date:<10} {c.status:<8} {name:<28} "
                    f"{c.syndrome or '-':<12} {c.precaution_type}"
                )


def _handle_detect_store(args):
    from icntrack.state import detect_state_key, locate_state

    with _open_tracker(args) as tracker:
        located = locate_state(tracker.store)
        legacy = detect_state_key(tracker.store)
    if located is None:
        print("No tracker state found.")
        return
    print(f"State key: {located.key} (wrapped={located.wrapped}, score={located.score})")
    if legacy is not None and legacy.key != located.key:
        print(f"Legacy candidate: {legacy.key} (wrapped={legacy.wrapped}, score={legacy.score})")


def _handle_summary(args):
    with _open_tracker(args) as tracker:
        summary = tracker.summary()

    print(f"\n{'='*50}")
    print("Tracker Summary")
    print(f"{'='*50}")
    for name, count in summary.items():
        print(f"  {name:<25} {count!s:>6}")
    print(f"{'='*50}")


def _handle_reset(args):
    if not args.yes:
        print("Refusing to reset without --yes.")
        sys.exit(1)
    with _open_tracker(args) as tracker:
        tracker.reset()
    print("All stored data deleted.")


def _handle_init_config(args):
    from icntrack.config import generate_config
    from icntrack.db import IcnDB
    from icntrack.state import init_state

    with IcnDB(args.db) as db:
        db.init_schema()
        state = init_state(db)
    path = generate_config(args.output, state=state, facility_name=args.facility, db_path=args.db)
    print(f"Config generated at {path}")


def _handle_serve_mcp(args):
    import os

    os.environ["ICNTRACK_DB"] = args.db

    from icntrack.mcp.server import mcp

    mcp.run()


if __name__ == "__main__":
    main()
