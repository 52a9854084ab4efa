#!/usr/bin/env python
"""Command line entry point: ``mysql-rights [--config FILE] {apply,plan} MANIFEST``."""
import argparse
import logging
import sys

import yaml
from jsonschema import ValidationError

from contracts.rights_manifest import load_manifest
from .config_manager import load_config, validate_config
from .credentials import resolve_db_password
from .data_models import ClientOptions, OutcomeStatus
from .executor import Executor
from .logger import register_secrets, setup_logger
from .prerequisites import user_account_exists
from .reconciler import Reconciler
from .task_manager import TaskManager
from .templater import CommandTemplater

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mysql-rights",
        description="Converge MySQL database grants to a declared manifest.",
    )
    parser.add_argument("--config", help="Configuration file (default: config/config.yml)")
    parser.add_argument(
        "--workers", type=int, help="Parallel reconciliations (default: max_workers)"
    )
    parser.add_argument(
        "command",
        choices=["apply", "plan"],
        help="apply: change the server; plan: only report what apply would do",
    )
    parser.add_argument("manifest", help="YAML or JSON rights manifest")
    return parser


def format_outcome(outcome) -> str:
    line = f"{outcome.title}: {outcome.status.value}"
    if outcome.status is OutcomeStatus.FAILED:
        line += f" ({outcome.reason.value}: {outcome.detail})"
    elif outcome.status is OutcomeStatus.PLANNED:
        line += f"\n    {outcome.detail}"
    return line


def build_reconciler(cfg, workers=None):
    """Wire client options, executor and task manager from *cfg*."""
    db_password = resolve_db_password(cfg.get("db_user"))
    if db_password:
        register_secrets([db_password])
    templater = CommandTemplater(ClientOptions.from_config(cfg, db_password))
    executor = Executor(
        allowed_paths=cfg["allowed_paths"],
        timeout=cfg.get("command_timeout"),
        prerequisite_timeout=cfg.get("prerequisite_timeout"),
        log_output=bool(cfg.get("log_output", True)),
    )
    tasks = TaskManager(workers or cfg["max_workers"])
    return Reconciler(executor, templater, tasks)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
        validate_config(cfg)
    except (OSError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_INVALID
    setup_logger(cfg)

    dry_run = args.command == "plan"
    try:
        manifest = load_manifest(args.manifest, require_password=not dry_run)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Invalid manifest %s: %s", args.manifest, e)
        print(f"Invalid manifest: {e}", file=sys.stderr)
        return EXIT_INVALID
    except ValidationError as e:
        logger.error("Invalid manifest %s: %s", args.manifest, e.message)
        print(f"Invalid manifest: {e.message}", file=sys.stderr)
        return EXIT_INVALID

    reconciler = build_reconciler(cfg, args.workers)
    try:
        prerequisites = {
            intent.title: [
                user_account_exists(
                    reconciler.executor, reconciler.templater, intent,
                    timeout=cfg.get("command_timeout"),
                )
            ]
            for intent in manifest.intents
            if manifest.require_user.get(intent.title)
        }
        outcomes = reconciler.reconcile_all(
            manifest.intents,
            prerequisites=prerequisites,
            requires=manifest.requires,
            dry_run=dry_run,
        )
    except ValueError as e:
        print(f"Invalid manifest: {e}", file=sys.stderr)
        return EXIT_INVALID
    finally:
        reconciler.task_manager.shutdown()

    for outcome in outcomes:
        print(format_outcome(outcome))
    failed = [o for o in outcomes if o.failed]
    logger.info(
        "%s finished: %d rights, %d changed, %d failed",
        args.command, len(outcomes), sum(o.changed for o in outcomes), len(failed),
    )
    return EXIT_FAILED if failed else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
