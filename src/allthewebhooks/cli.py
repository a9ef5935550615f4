"""Command line tools for administrators.

    python -m allthewebhooks validate --config config/webhooks.json
    python -m allthewebhooks fire player.chat player.name=Alice chat.message=hi --dry-run
    python -m allthewebhooks docs --output docs/events.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .core.logging_config import setup_logging
from .core.settings import SettingsManager, collect_warnings
from .events import create_default_normalizer
from .webhooks.dispatcher import WebhookService
from .webhooks.errors import ConfigError


def parse_assignments(pairs: List[str]) -> Dict[str, str]:
    """Turn ``key=value`` arguments into attributes.

    Raises:
        ValueError: If an argument has no ``=``.
    """
    attributes = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got '{pair}'")
        attributes[key] = value
    return attributes


def cmd_validate(args: argparse.Namespace) -> int:
    manager = SettingsManager(args.config)
    try:
        settings = manager.load()
    except ConfigError as e:
        print(f"✗ {manager.path}: {e}")
        for issue in e.issues:
            print(f"    · {issue}")
        return 1

    warnings = collect_warnings(settings, create_default_normalizer().kinds())
    print(f"✓ {manager.path}: {len(settings.targets)} target(s)")
    for warning in warnings:
        print(f"  ! {warning}")
    return 0


def cmd_fire(args: argparse.Namespace) -> int:
    try:
        attributes = parse_assignments(args.attributes)
    except ValueError as e:
        print(f"✗ {e}")
        return 2

    try:
        service = WebhookService.from_config(args.config)
    except ConfigError as e:
        print(f"✗ {e}")
        for issue in e.issues:
            print(f"    · {issue}")
        return 1

    if not args.dry_run:
        service.start()
    try:
        report = service.fire(args.kind, attributes, dry_run=args.dry_run)
        print_report(report)
        if not args.dry_run and report["accepted"]:
            if not service.wait_idle(args.timeout):
                print(f"! Deliveries still pending after {args.timeout}s")
            for result in service.get_recent_deliveries(report["accepted"]):
                print(f"  → {result.target_id}: {result.outcome.value} "
                      f"after {result.attempts} attempt(s)"
                      + (f" ({result.error_message})" if result.error_message else ""))
    finally:
        service.stop()
    return 0


def cmd_docs(args: argparse.Namespace) -> int:
    try:
        service = WebhookService.from_config(args.config)
    except ConfigError as e:
        print(f"✗ {e}")
        for issue in e.issues:
            print(f"    · {issue}")
        return 1

    listing = service.event_kinds()
    text = json.dumps(listing, indent=2, ensure_ascii=False)
    if args.output is None:
        print(text)
        return 0

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    print(f"✓ Wrote {len(listing)} event kind(s) to {output}")
    return 0


def print_report(report: dict) -> None:
    event = report["event"]
    mode = " (dry run)" if report["dry_run"] else ""
    print(f"Event {event['kind']}{mode}")
    if not report["registered"]:
        print("  ! kind is not in the event registration table")
    if not report["targets"]:
        print("  no targets subscribed")
        return

    for step in report["targets"]:
        print(f"  target {step['id']} (matched {step['matched']})")
        if step.get("world_disabled"):
            print("    world: disabled for this target, skipped")
            continue
        if not step.get("conditions", True):
            print("    conditions: not met, skipped")
            continue
        if "error" in step:
            print(f"    build error: {step['error']}")
            continue
        print(f"    content-type: {step['content_type']}")
        print(f"    body: {step['body']}")
        if "enqueued" in step:
            print(f"    enqueued: {'yes' if step['enqueued'] else 'no'}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="allthewebhooks",
        description="Administer game-event webhook delivery.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check a configuration file")
    validate.add_argument("--config", help="Config file (default: $ALLTHEWEBHOOKS_CONFIG)")
    validate.set_defaults(func=cmd_validate)

    fire = subparsers.add_parser("fire", help="Fire a synthetic event")
    fire.add_argument("kind", help="Event kind, e.g. player.chat")
    fire.add_argument("attributes", nargs="*", help="Attributes as key=value")
    fire.add_argument("--config", help="Config file (default: $ALLTHEWEBHOOKS_CONFIG)")
    fire.add_argument("--dry-run", action="store_true", help="Render payloads without sending")
    fire.add_argument("--timeout", type=float, default=30.0, help="Seconds to wait for delivery")
    fire.set_defaults(func=cmd_fire)

    docs = subparsers.add_parser("docs", help="Export the event kind reference as JSON")
    docs.add_argument("--config", help="Config file (default: $ALLTHEWEBHOOKS_CONFIG)")
    docs.add_argument("--output", "-o", help="File to write (default: stdout)")
    docs.set_defaults(func=cmd_docs)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING, log_file=None)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
