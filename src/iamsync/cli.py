"""
Command-line interface for iamsync.

Usage (examples):
  - Plan against the live account (no changes):
      iamsync plan --records ./users.csv --region us-east-1

  - Plan offline (empty in-memory account):
      iamsync plan --records ./users.csv --dry-run

  - Apply, writing generated console passwords to a 0600 file:
      iamsync apply --records ./users.xlsx --profile ops --secrets-out ./passwords.json
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Any, Dict, Iterable

from .core.aws import AwsIamService
from .core.config import AppConfig, load_config
from .core.engine import ProvisioningEngine
from .core.errors import (
    ConfigError,
    GraphIntegrityViolation,
    KeyDerivationError,
    RemoteCallFailed,
    SourceError,
)
from .core.logging_setup import bind_context, build_logger
from .core.reporting import print_plan, print_report, summarize_counts, write_secrets
from .core.service import IamService, InMemoryIamService
from .core.sources import read_records

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INPUT_ERROR = 3
EXIT_REMOTE_ERROR = 4
EXIT_INTEGRITY_ERROR = 5
EXIT_PARTIAL_FAILURE = 6


def _build_arg_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--records", default=None, help="Input records file (.csv or .xlsx)")
    common.add_argument("--sheet", default=None, help="XLSX sheet name (default: first sheet)")
    common.add_argument("--config", default=None, help="YAML config file (default: search ./iamsync.yml, ...)")
    common.add_argument("--dry-run", action="store_true", help="Use an empty in-memory account, no AWS calls")

    # AWS
    common.add_argument("--region", default=None, help="AWS region")
    common.add_argument("--profile", default=None, help="AWS named profile")

    # Reconcile
    common.add_argument("--concurrency", type=int, default=None, help="Worker pool size")
    common.add_argument("--timeout-sec", type=float, default=None, help="Per-call timeout seconds")
    common.add_argument("--retries", type=int, default=None, help="Max attempts per operation")

    # Logging / output
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    p = argparse.ArgumentParser(prog="iamsync", description="Provision IAM users and groups from a table")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("plan", parents=[common], help="Show the change set without applying it")
    a = sub.add_parser("apply", parents=[common], help="Reconcile the account with the records")
    a.add_argument("--secrets-out", default=None, help="Write generated console passwords (JSON, mode 0600)")
    return p


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {"app": {"dry_run": bool(args.dry_run)}}

    def put(section: str, key: str, value: Any) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    put("inputs", "records_path", args.records)
    put("aws", "region", args.region)
    put("aws", "profile", args.profile)
    put("reconcile", "concurrency", args.concurrency)
    put("reconcile", "call_timeout_sec", args.timeout_sec)
    put("reconcile", "max_attempts", args.retries)
    put("logging", "base_dir", args.logs_dir)
    put("logging", "console_level", args.console_level)
    return overrides


def _make_service(cfg: AppConfig) -> IamService:
    if cfg.app.dry_run:
        return InMemoryIamService()
    return AwsIamService.from_session(
        region=cfg.aws.region,
        profile=cfg.aws.profile,
        timeout_sec=cfg.reconcile.call_timeout_sec,
        path=cfg.aws.path,
        password_reset_required=cfg.aws.password_reset_required,
    )


def _run(args: argparse.Namespace) -> int:
    if args.config:
        if not os.path.isfile(args.config):
            raise ConfigError(f"Config file not found: {args.config}")
        cfg = load_config(_cli_overrides(args), files=(args.config,))
    else:
        cfg = load_config(_cli_overrides(args))

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
    )
    logger.info("Starting iamsync %s (dry_run=%s)", args.cmd, cfg.app.dry_run)

    rows = read_records(cfg.inputs.records_path, args.sheet)
    service = _make_service(cfg)
    engine = ProvisioningEngine.from_config(cfg, service, logger=logger)

    plan = engine.plan(rows)
    bind_context(logger, account=plan.account_id)
    for err in plan.rejected:
        logger.warning("Rejected %s", err)

    if args.cmd == "plan":
        print_plan(plan.changeset, args.format)
        logger.info("Plan: %d operation(s), %d rejected record(s)", len(plan.changeset), len(plan.rejected))
        return EXIT_OK

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())
    try:
        report = engine.apply_plan(plan, cancel=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    if args.secrets_out and report.secrets:
        write_secrets(report.secrets, args.secrets_out)
        logger.info("Wrote %d console password(s) to %s", len(report.secrets), args.secrets_out)

    print_report(report, args.format)
    logger.info("Apply summary: %s", summarize_counts(report.counts))
    return EXIT_PARTIAL_FAILURE if report.any_failed else EXIT_OK


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        return _run(args)
    except (ConfigError, KeyDerivationError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except SourceError as exc:
        print(f"Input error: {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except GraphIntegrityViolation as exc:
        print(f"Integrity violation (nothing applied): {exc}", file=sys.stderr)
        return EXIT_INTEGRITY_ERROR
    except RemoteCallFailed as exc:
        print(f"Remote service error: {exc}", file=sys.stderr)
        return EXIT_REMOTE_ERROR
    except Exception as exc:  # pragma: no cover
        logging.getLogger("iamsync").exception("Unhandled error: %s", exc)
        print(f"Unexpected error ({type(exc).__name__}): {exc}", file=sys.stderr)
        return EXIT_GENERIC_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
