"""
Command line entry point.

    doccapture acquire --work-id case-42 --document-url https://example.com/42.pdf \\
        --selector "a.download-button" --output ./case-42.pdf
    doccapture purge --retention-s 3600

Exit codes: 0 captured, 1 all strategies failed, 2 browser could not
start, 3 browser died mid-run, 130 cancelled.
"""

from __future__ import annotations

import argparse
import json
import shutil
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import List, Optional
import logging

from dotenv import load_dotenv

from .acquisition.artifact_store import DiskArtifactStore
from .acquisition.strategies import TargetDocument
from .cleanup import purge_stale_artifacts, remove_tree_quietly
from .config import DeploymentMode, EngineSettings, SelectionPolicy
from .errors import AcquisitionCancelled, AcquisitionFailure, ChannelError, ProvisioningError
from .logging_config import setup_logging
from .runner import WorkItem, run_work_item

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PROVISIONING = 2
EXIT_CHANNEL = 3
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="doccapture", description="Browser-driven document capture")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load (default: .env)")
    parser.add_argument("--verbose", "-v", action="store_true", help="DEBUG output on the console")
    sub = parser.add_subparsers(dest="command", required=True)

    acq = sub.add_parser("acquire", help="Capture one document")
    acq.add_argument("--work-id", required=True)
    acq.add_argument("--page-url")
    acq.add_argument("--document-url")
    acq.add_argument("--selector", action="append", default=[], dest="selectors",
                     help="CSS selector for the download link; repeat, most specific first")
    acq.add_argument("--href-contains")
    acq.add_argument("--label", help="Name used for the stored artifact")
    acq.add_argument("--mode", choices=[m.value for m in DeploymentMode])
    acq.add_argument("--base-dir", type=Path)
    acq.add_argument("--timeout", type=float, help="Per-strategy wait budget in seconds")
    acq.add_argument("--exhaustive", action="store_true", help="Run every strategy even after a success")
    acq.add_argument("--page-print", action="store_true", help="Print the page itself if no download is captured")
    acq.add_argument("--policy", choices=[p.value for p in SelectionPolicy])
    acq.add_argument("--output", "-o", type=Path, help="Copy the captured document here")

    purge = sub.add_parser("purge", help="Remove stale browser profiles, abandoned captures and driver logs")
    purge.add_argument("--base-dir", type=Path)
    purge.add_argument("--retention-s", type=float)

    return parser


def _apply_overrides(settings: EngineSettings, args: argparse.Namespace) -> EngineSettings:
    overrides = {}
    if getattr(args, "base_dir", None):
        overrides["base_dir"] = args.base_dir
    if getattr(args, "timeout", None):
        overrides["strategy_timeout_s"] = args.timeout
    if getattr(args, "exhaustive", False):
        overrides["stop_on_first_success"] = False
    if getattr(args, "page_print", False):
        overrides["page_print_fallback"] = True
    if getattr(args, "policy", None):
        overrides["selection_policy"] = SelectionPolicy(args.policy)
    if getattr(args, "retention_s", None) is not None:
        overrides["retention_s"] = args.retention_s
    return replace(settings, **overrides) if overrides else settings


def cmd_acquire(args: argparse.Namespace, settings: EngineSettings) -> int:
    if not (args.page_url or args.document_url):
        logger.error("[CLI] --page-url or --document-url is required")
        return EXIT_FAILED

    cancel = threading.Event()

    def _on_signal(signum, _frame):
        logger.warning(f"[CLI] Signal {signum} received, cancelling")
        cancel.set()

    previous_handler = signal.signal(signal.SIGTERM, _on_signal)
    try:
        return _run_acquire(args, settings, cancel)
    finally:
        signal.signal(signal.SIGTERM, previous_handler)


def _run_acquire(args: argparse.Namespace, settings: EngineSettings, cancel: threading.Event) -> int:
    item = WorkItem(
        work_id=args.work_id,
        target=TargetDocument(
            page_url=args.page_url,
            document_url=args.document_url,
            selectors=tuple(args.selectors),
            href_contains=args.href_contains,
        ),
        mode=DeploymentMode(args.mode) if args.mode else None,
        cancel_event=cancel,
        label=args.label,
    )
    store = DiskArtifactStore(str(settings.artifact_dir)) if settings.artifact_dir else None

    try:
        result = run_work_item(item, settings=settings, store=store)
    except ProvisioningError as e:
        logger.error(f"[CLI] Browser could not start: {e}")
        return EXIT_PROVISIONING
    except ChannelError as e:
        logger.error(f"[CLI] Browser died: {e}")
        return EXIT_CHANNEL
    except AcquisitionCancelled as e:
        logger.warning(f"[CLI] Cancelled after {len(e.attempts)} attempt(s)")
        return EXIT_CANCELLED
    except AcquisitionFailure as e:
        print(json.dumps(e.result.to_dict(), indent=2))
        return EXIT_FAILED

    if args.output and result.artifact_path:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(result.artifact_path, args.output)
        remove_tree_quietly(result.artifact_path.parent)
        logger.info(f"[CLI] Saved {args.output} ({result.size_bytes} bytes)")

    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK


def cmd_purge(args: argparse.Namespace, settings: EngineSettings) -> int:
    removed = purge_stale_artifacts(settings.base_dir, settings.retention_s)
    print(json.dumps({"base_dir": str(settings.base_dir), "removed": removed}))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv(args.env_file)

    settings = _apply_overrides(EngineSettings.from_env(), args)
    # stdout carries the JSON result
    setup_logging(
        settings.log_dir,
        console_level=logging.DEBUG if args.verbose else logging.INFO,
        stream=sys.stderr,
    )

    if args.command == "acquire":
        return cmd_acquire(args, settings)
    return cmd_purge(args, settings)


if __name__ == "__main__":
    sys.exit(main())
