"""Entry point for `python -m engine_launcher` and the `engine-launcher` CLI script."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from engine_launcher import get_version
from engine_launcher.errors import LauncherBusy
from engine_launcher.models import RunOutcome
from engine_launcher.orchestrator import LaunchOrchestrator
from engine_launcher.settings import LauncherSettings
from engine_launcher.state_store import InstallLayout

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="engine-launcher",
        description="Sync, build and launch the engine, repairing local state as needed",
    )
    parser.add_argument("--dry-run", "--test", action="store_true", help="Audit only: do not sync, build or launch")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--skip-elevation",
        action="store_true",
        help="Do not warn when running without administrator rights",
    )
    parser.add_argument(
        "--install-dir",
        type=Path,
        default=None,
        help="Installation root (default: LAUNCHER_INSTALL_DIR or the per-user data directory)",
    )
    parser.add_argument("--no-pause", action="store_true", help="Exit immediately on fatal errors")
    parser.add_argument("-V", "--version", action="version", version=f"engine-launcher {get_version()}")
    return parser.parse_args(argv)


def configure_logging(logs_dir: Path, *, verbose: bool) -> Path:
    """Log to the console and to a timestamped file under *logs_dir*."""
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / f"launcher_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    level = logging.DEBUG if verbose else logging.INFO
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout), file_handler],
        force=True,
    )
    return log_file


def is_elevated() -> bool:
    if sys.platform == "win32":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def wait_for_enter() -> None:
    if not sys.stdin.isatty():
        return
    try:
        input("Press Enter to exit...")
    except EOFError:
        pass


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = LauncherSettings.from_env()
        if args.install_dir is not None:
            settings = replace(settings, install_dir=str(args.install_dir.expanduser().resolve())).normalized()
    except ValueError as exc:
        print(f"Invalid launcher configuration: {exc}", file=sys.stderr)
        return 1

    layout = InstallLayout.from_settings(settings)
    try:
        layout.ensure_structure()
        log_file = configure_logging(layout.logs_dir, verbose=args.verbose)
    except OSError as exc:
        print(f"Unable to prepare install directory {layout.root}: {exc}", file=sys.stderr)
        return 1

    logging.info("engine-launcher %s", get_version())
    logging.info("Log file: %s", log_file)
    if not args.skip_elevation and not is_elevated():
        logging.warning("Running without administrator rights; toolchain installers may require them")

    orchestrator = LaunchOrchestrator(settings, layout=layout)
    try:
        result = orchestrator.run(dry_run=args.dry_run)
    except LauncherBusy as exc:
        logging.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logging.error("Interrupted")
        return 1
    except Exception as exc:  # noqa: BLE001
        logging.exception("Launcher execution failed: %s", exc)
        if not args.no_pause:
            wait_for_enter()
        return 1

    outcome = result.get("outcome")
    if outcome == RunOutcome.DONE.value:
        logging.info("Engine launched successfully")
        return 0
    if outcome == RunOutcome.AUDITED.value:
        logging.info("All checks completed. Run without --dry-run to perform the full installation.")
        return 0

    logging.error("FATAL: %s", result.get("last_error") or "launcher did not complete")
    if not args.no_pause:
        wait_for_enter()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
