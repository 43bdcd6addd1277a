"""Contact auditor CLI."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

from .auditor import ContactAuditInterruptedError, ContactAuditor
from .config import LOG_LEVELS, ContactAuditConfigError, load_auditor_config
from .email_policy import EmailPolicy
from .logging_utils import configure_logging
from .sink import ConsoleDestination, FileDestination, ReportDestination, ResultSink, create_report_file
from .storage import ContactAuditStore, ContactAuditStoreError, connect_store


logger = logging.getLogger("contact_auditor.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contact-auditor",
        description="Audit stored registration contacts for corruption and policy violations",
    )
    parser.add_argument("--config", required=True, help="Path to the contact auditor YAML (or JSON) config")
    parser.add_argument("--to-stdout", action="store_true", help="Print the audit results to stdout")
    parser.add_argument("--to-file", action="store_true", help="Write the audit results to a timestamped TSV file")
    parser.add_argument("--results-dir", default=None, help="Directory for the results file (overrides config)")
    parser.add_argument("--log-level", default=None, choices=LOG_LEVELS, help="Override the configured log level")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_auditor_config(Path(args.config))
    except ContactAuditConfigError as exc:
        configure_logging(args.log_level or logging.INFO)
        logger.error("Couldn't load config: %s", exc)
        return 1
    configure_logging(args.log_level or config.logging.level, config.logging.log_path)

    try:
        store = connect_store(config.db)
    except ContactAuditStoreError as exc:
        logger.error("Couldn't setup database client: %s", exc)
        return 1

    destinations: list[ReportDestination] = []
    if args.to_stdout:
        destinations.append(ConsoleDestination())
    results_file: FileDestination | None = None
    if args.to_file:
        results_dir = Path(args.results_dir) if args.results_dir else config.output.results_dir
        try:
            results_file = create_report_file(results_dir)
        except OSError as exc:
            logger.error("Failed to create results file: %s", exc)
            _close_store(store)
            return 1
        destinations.append(results_file)

    auditor = ContactAuditor(
        store=store,
        sink=ResultSink(destinations),
        email_check=EmailPolicy(forbidden_domains=config.forbidden_email_domains),
    )
    logger.info("Running contact-auditor")
    try:
        with auditor.sink:
            auditor.run()
    except ContactAuditInterruptedError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        _close_store(store)

    logger.info("Audit finished successfully")
    if results_file is not None:
        logger.info("Audit results were written to: %s", results_file.path)
    return 0


def _close_store(store: ContactAuditStore) -> None:
    try:
        store.close()
    except ContactAuditStoreError as exc:
        logger.warning("Contact store close failed: %s", exc)


if __name__ == "__main__":
    sys.exit(main())
