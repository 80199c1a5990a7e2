"""Command line entry point for the ChargeQuest core."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .catalog import StationCatalog
from .config import DATA_DIR, DEFAULT_PLAYER_ID
from .errors import ChargeQuestError, InvalidPositionError
from .events import CollectingSink, StationBecameDiscoverable, event_to_dict
from .models import Position
from .provider import close_default_session
from .services import StationSyncService
from .session import PlayerSession
from .storage import GameRepository, JsonFileStore
from .utils import parse_iso_datetime, utcnow

LOGGER = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _open_repository(data_dir: str) -> GameRepository:
    return GameRepository(JsonFileStore(data_dir))


def _load_catalog(repository: GameRepository) -> StationCatalog:
    catalog = StationCatalog(repository.load_stations())
    LOGGER.info("Loaded %d stations from storage", len(catalog))
    return catalog


def load_fixes(path: str | Path) -> List[Position]:
    """Read a JSON list of ``{lat, lon, accuracy, captured_at}`` objects."""

    with Path(path).open("r", encoding="utf-8") as handle:
        raw = json.load(handle)
    if not isinstance(raw, list):
        raise InvalidPositionError(f"{path}: expected a JSON list of fixes")
    fixes: List[Position] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise InvalidPositionError(f"{path}: fix #{index} is not an object")
        captured_at = parse_iso_datetime(item.get("captured_at"))
        if captured_at is None:
            raise InvalidPositionError(f"{path}: fix #{index} has no captured_at")
        try:
            accuracy = item.get("accuracy")
            fix = Position(
                latitude=float(item["lat"]),
                longitude=float(item["lon"]),
                captured_at=captured_at,
                accuracy=float(accuracy) if accuracy is not None else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidPositionError(f"{path}: fix #{index}: {exc}") from exc
        fixes.append(fix.validate())
    return fixes


def _wait_for(future: Future, poll_seconds: float = 0.5) -> Any:
    """Block on ``future`` in short slices so Ctrl-C reaches the main thread."""

    while not future.done():
        wait([future], timeout=poll_seconds)
    return future.result()


def _cmd_sync(args: argparse.Namespace) -> int:
    repository = _open_repository(args.data_dir)
    catalog = _load_catalog(repository)
    cancel_event = threading.Event()
    service = StationSyncService(catalog, repository=repository)
    try:
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync") as executor:
            future = executor.submit(service.run, cancel_event)
            try:
                report = _wait_for(future)
            except KeyboardInterrupt:
                cancel_event.set()
                LOGGER.warning("Sync interrupted; waiting for in-flight pages")
                report = future.result()
                LOGGER.info(
                    "Sync stopped after %d of %d centers",
                    report.centers_synced,
                    report.centers_total,
                )
                return 130
    finally:
        close_default_session()
    _print_json(
        {
            "centers_total": report.centers_total,
            "centers_synced": report.centers_synced,
            "added": report.added,
            "updated": report.updated,
            "unchanged": report.unchanged,
            "catalog_size": len(catalog),
            "errors": report.errors,
        }
    )
    return 0 if not report.errors else 1


def _cmd_simulate(args: argparse.Namespace) -> int:
    fixes = load_fixes(args.fixes)
    repository = _open_repository(args.data_dir)
    catalog = _load_catalog(repository)
    sink = CollectingSink()
    # Simulated time follows the fix stream so epochs line up with captured_at.
    current: Dict[str, datetime] = {"now": fixes[0].captured_at if fixes else utcnow()}
    session = PlayerSession.load(
        args.player, catalog, repository, sink=sink, clock=lambda: current["now"]
    )
    accepted = 0
    for fix in fixes:
        current["now"] = fix.captured_at
        outcome = session.handle_fix(fix)
        if outcome.decision.accepted:
            accepted += 1
        if args.auto_claim:
            for event in outcome.events:
                if isinstance(event, StationBecameDiscoverable):
                    session.request_claim(event.station.external_id)
    for event in sink.events:
        _print_json(event_to_dict(event))
    LOGGER.info("Processed %d fixes (%d accepted)", len(fixes), accepted)
    _print_json(session.status())
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    repository = _open_repository(args.data_dir)
    session = PlayerSession.load(args.player, _load_catalog(repository), repository)
    _print_json(session.status())
    return 0


def _cmd_claim(args: argparse.Namespace) -> int:
    repository = _open_repository(args.data_dir)
    session = PlayerSession.load(args.player, _load_catalog(repository), repository)
    result = session.request_claim(args.station_id)
    _print_json(
        {
            "station_id": result.station_id,
            "already_claimed": result.already_claimed,
            "experience_awarded": result.experience_awarded,
            "total_experience": result.total_experience,
            "level": result.level,
            "leveled_up": result.leveled_up,
            "loot": result.reward.to_dict() if result.reward else None,
        }
    )
    return 0


def _cmd_collect(args: argparse.Namespace) -> int:
    repository = _open_repository(args.data_dir)
    session = PlayerSession.load(args.player, _load_catalog(repository), repository)
    result = session.collect_loot(args.loot_id)
    _print_json(
        {
            "loot": result.reward.to_dict(),
            "already_collected": result.already_collected,
            "experience_awarded": result.experience_awarded,
            "total_experience": result.total_experience,
            "level": result.level,
            "leveled_up": result.leveled_up,
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="charge-quest", description="EV charging station discovery core"
    )
    parser.add_argument(
        "--data-dir",
        default=DATA_DIR,
        help=f"Directory for the JSON store (default: {DATA_DIR})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Fetch stations from the provider")
    sync.set_defaults(handler=_cmd_sync)

    def _player(p: argparse.ArgumentParser) -> None:
        p.add_argument("--player", default=DEFAULT_PLAYER_ID, help="Player id")

    simulate = sub.add_parser("simulate", help="Replay a JSON file of GPS fixes")
    simulate.add_argument("fixes", help="Path to a JSON list of fixes")
    simulate.add_argument(
        "--auto-claim",
        action="store_true",
        help="Claim stations as soon as they become discoverable",
    )
    _player(simulate)
    simulate.set_defaults(handler=_cmd_simulate)

    status = sub.add_parser("status", help="Show level and experience")
    _player(status)
    status.set_defaults(handler=_cmd_status)

    claim = sub.add_parser("claim", help="Claim a discoverable station")
    claim.add_argument("station_id")
    _player(claim)
    claim.set_defaults(handler=_cmd_claim)

    collect = sub.add_parser("collect", help="Collect a loot drop")
    collect.add_argument("loot_id")
    _player(collect)
    collect.set_defaults(handler=_cmd_collect)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        return args.handler(args)
    except ChargeQuestError as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1
    except OSError as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
