import argparse
import logging
import os
import threading
from typing import List, Optional

from .config import build_scheduler, load_config
from .errors import ConfigurationError
from .report import to_markdown
from .schemas import Snapshot

logger = logging.getLogger(__name__)


def ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def write_outputs(snapshot: Snapshot, out_json: str, out_md: str) -> None:
    ensure_parent(out_json)
    ensure_parent(out_md)
    with open(out_json, "w", encoding="utf-8") as f:
        f.write(snapshot.model_dump_json(indent=2))
    with open(out_md, "w", encoding="utf-8") as f:
        f.write(to_markdown(snapshot))


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="threatfeed", description="Threat intelligence feed aggregator")
    ap.add_argument("--config", default="config.toml", help="TOML configuration file")
    ap.add_argument("--force", action="store_true", help="Ignore cached snapshots and fetch every feed")
    ap.add_argument("--out-json", default="out/snapshot.json")
    ap.add_argument("--out-md", default="out/summary.md")
    ap.add_argument("--watch", type=float, metavar="SECONDS", help="Keep polling at this interval")
    ap.add_argument("--disable", action="append", default=[], metavar="NAME", help="Disable a source (repeatable)")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        scheduler = build_scheduler(load_config(args.config))
        for name in args.disable:
            scheduler.set_source_enabled(name, False)
    except ConfigurationError as e:
        ap.error(str(e))
    except KeyError as e:
        ap.error(f"unknown source {e.args[0]!r}")

    if args.watch is None:
        snapshot = scheduler.refresh(force=args.force)
        write_outputs(snapshot, args.out_json, args.out_md)
        print(f"Saved → {args.out_json}\nSaved → {args.out_md}")
        return 0

    def on_snapshot(snapshot: Snapshot) -> None:
        if snapshot.version == 0:
            return
        write_outputs(snapshot, args.out_json, args.out_md)
        logger.info(f"Saved snapshot v{snapshot.version} ({snapshot.total} indicators)")

    scheduler.interval = args.watch
    unsubscribe = scheduler.subscribe(on_snapshot)
    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Stopping")
    finally:
        unsubscribe()
        scheduler.stop(timeout=5)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
