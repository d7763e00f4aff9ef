"""Command line interface for the target manager."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from .enginelib import codec
from .enginelib.errors import TargetManagerError
from .enginelib.marker_record import RANK_COLORS
from .service import TargetManagerService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GPS target manager")
    parser.add_argument("-c", "--config", required=True, help="Path to target_manager_config.yaml")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List stored targets")
    list_cmd.add_argument("--rank", type=int, choices=sorted(RANK_COLORS))
    list_cmd.add_argument("--region")

    add_cmd = sub.add_parser("add", help="Add a target at the given coordinates")
    add_cmd.add_argument("--lat", type=float, required=True)
    add_cmd.add_argument("--lng", type=float, required=True)
    add_cmd.add_argument("--name", default="Marked Location")
    add_cmd.add_argument("--note", default="")
    add_cmd.add_argument("--rank", type=int, default=1, choices=sorted(RANK_COLORS))
    add_cmd.add_argument("--region", help="Skip the reverse lookup and use this region")

    remove_cmd = sub.add_parser("remove", help="Remove a target by id")
    remove_cmd.add_argument("id")

    export_cmd = sub.add_parser("export", help="Export targets as JSON or CSV")
    export_cmd.add_argument("--format", choices=codec.FORMATS, default=codec.STRUCTURED)
    export_cmd.add_argument("--output", help="Output file or directory (default: stdout)")

    import_cmd = sub.add_parser("import", help="Import and merge a .json or .csv file")
    import_cmd.add_argument("files", nargs="+")

    sub.add_parser("regions", help="List distinct regions")
    sub.add_parser("watch", help="Watch the inbox directory and import dropped files")
    sub.add_parser("gui", help="Run the web dashboard")
    return parser


def _load_service(args: argparse.Namespace) -> TargetManagerService:
    return TargetManagerService(Path(args.config))


def cmd_list(args: argparse.Namespace) -> int:
    service = _load_service(args)
    for index, marker in enumerate(service.list_targets(rank=args.rank, region=args.region), start=1):
        label = RANK_COLORS[marker.effective_rank]["label"]
        print(
            f"TARGET {index}\t{label}\t{marker.lat:.6f},{marker.lng:.6f}\t"
            f"{marker.effective_region}\t{marker.display_name}\t{marker.id}"
        )
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    service = _load_service(args)
    marker = service.add_at(
        args.lat,
        args.lng,
        name=args.name,
        note=args.note,
        rank=args.rank,
        region=args.region,
    )
    print(json.dumps(marker.to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    service = _load_service(args)
    if not service.remove_target(args.id):
        print(f"Unknown target: {args.id}", file=sys.stderr)
        return 1
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    service = _load_service(args)
    export = service.export(args.format)
    if not args.output:
        print(export.content)
        return 0
    output = Path(args.output)
    if output.is_dir():
        output = output / export.filename
    with open(output, "w", encoding="utf-8") as handle:
        handle.write(export.content)
    print(output)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    service = _load_service(args)
    for name in args.files:
        path = Path(name)
        with open(path, "r", encoding="utf-8") as handle:
            report = service.import_content(path.name, handle.read())
        print(json.dumps({"file": str(path), **report.summary()}, indent=2, ensure_ascii=False))
    return 0


def cmd_regions(args: argparse.Namespace) -> int:
    service = _load_service(args)
    for region in service.regions():
        print(region)
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    service = _load_service(args)
    service.start_watcher()
    print(f"Watching {service.config.inbox_dir}. Press Ctrl+C to exit.")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        service.close()
        print("Watcher stopped")
    return 0


def cmd_gui(args: argparse.Namespace) -> int:
    from .gui import create_app

    service = _load_service(args)
    app = create_app(service)
    try:
        app.run(host="0.0.0.0", port=5173, debug=False)
    finally:
        service.close()
    return 0


COMMAND_HANDLERS = {
    "list": cmd_list,
    "add": cmd_add,
    "remove": cmd_remove,
    "export": cmd_export,
    "import": cmd_import,
    "regions": cmd_regions,
    "watch": cmd_watch,
    "gui": cmd_gui,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handler = COMMAND_HANDLERS[args.command]
    try:
        return handler(args)
    except (TargetManagerError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
