from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv

from campuspulse.config.loader import DEFAULT_CONFIG_PATH, ConfigError, default_config, load_config
from campuspulse.db.repository import (
    DatasetNotFoundError,
    DatasetRepository,
    InMemoryRepository,
    InvalidStatusTransition,
    StorageError,
)
from campuspulse.ingest.reader import SourceReadError
from campuspulse.logging.init import log_summary, setup_logging
from campuspulse.models.config_models import AppConfig
from campuspulse.models.dataset import DatasetStatus
from campuspulse.services.lifecycle import DatasetManager
from campuspulse.services.normalizer import ImportValidationError
from campuspulse.services.summary import render_summary_fields

"""CLI entrypoint.

campuspulse [--config PATH] [--debug] <command>

Storage selection:
- DISABLE_DB_CONNECT=1 -> in-memory mode (nothing persists past the process)
- otherwise PostgreSQL; a failed connection falls back to in-memory mode

Exit codes: 0 success, 1 fatal error, 2 analysis finished with failed rows.
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

_HANDLED_ERRORS = (
    ConfigError,
    DatasetNotFoundError,
    ImportValidationError,
    InvalidStatusTransition,
    SourceReadError,
    StorageError,
)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv.

    override=True lets .env values win over existing environment variables,
    so database settings in .env take precedence.
    """
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


@contextmanager
def _open_repository(cfg: AppConfig, logger: logging.Logger) -> Iterator[tuple[DatasetRepository, str]]:
    """Yield (repository, mode) where mode is "live" or "mock"."""
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        yield InMemoryRepository(), "mock"
        return

    from campuspulse.db.postgres import PostgresRepository, connect

    try:
        conn = connect(cfg.database)
    except StorageError as e:
        logger.info(f"DB connection failed -> fallback to mock mode: {e}")
        yield InMemoryRepository(), "mock"
        return

    repo = PostgresRepository(conn)
    try:
        yield repo, "live"
    finally:
        repo.close()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="campuspulse", description="Campus feedback import & sentiment analysis")
    p.add_argument("--config", type=Path, default=None, help=f"YAML config (default {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("migrate", help="Create database tables")

    imp = sub.add_parser("import", help="Import a CSV file or a public Google Sheet")
    imp.add_argument("--title", required=True)
    source = imp.add_mutually_exclusive_group(required=True)
    source.add_argument("--csv", type=Path, help="Path to a CSV file")
    source.add_argument("--sheet", help="Google Sheets link (shared publicly)")
    imp.add_argument("--no-analyze", action="store_true", help="Only store the rows")

    for name, help_text in (
        ("analyze", "Analyze pending rows of a dataset"),
        ("status", "Show dataset progress"),
        ("delete", "Delete a dataset and its responses"),
        ("cancel", "Cancel a pending or running analysis"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("dataset_id")

    summ = sub.add_parser("summary", help="Show the sentiment summary of a dataset")
    summ.add_argument("dataset_id")
    summ.add_argument("--json", action="store_true", help="Print the summary as JSON")

    review = sub.add_parser("review-summary", help="Show the sentiment summary of a review request")
    review.add_argument("request_id")

    sub.add_parser("list", help="List datasets, most recent first")
    return p


def _resolve_config(path: Path | None, logger: logging.Logger) -> AppConfig:
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            logger.debug(f"{DEFAULT_CONFIG_PATH} not found -> defaults")
            return default_config()
        path = DEFAULT_CONFIG_PATH
    return load_config(path)


def _analyze(manager: DatasetManager, dataset_id: str, logger: logging.Logger) -> int:
    result = manager.analyze(dataset_id)
    if result.status == "deleted":
        logger.info(f"dataset {dataset_id} was deleted during analysis")
        return EXIT_SUCCESS_ALL
    dataset = manager.get_dataset(dataset_id)
    log_summary(render_summary_fields(dataset, result))
    if dataset.status == DatasetStatus.ERROR:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def _run_command(args: argparse.Namespace, manager: DatasetManager, repo: DatasetRepository, mode: str, logger: logging.Logger) -> int:
    if args.command == "migrate":
        if mode != "live":
            logger.info("mock mode: nothing to migrate")
            return EXIT_SUCCESS_ALL
        repo.create_schema()  # type: ignore[attr-defined]
        logger.info("schema ready")
        return EXIT_SUCCESS_ALL

    if args.command == "import":
        if args.csv is not None:
            receipt = manager.import_csv(args.csv, args.title, analyze=False)
        else:
            receipt = manager.import_google_sheet(args.sheet, args.title, analyze=False)
        print(json.dumps(receipt.to_dict()))
        if args.no_analyze:
            return EXIT_SUCCESS_ALL
        return _analyze(manager, receipt.dataset_id, logger)

    if args.command == "analyze":
        return _analyze(manager, args.dataset_id, logger)

    if args.command == "status":
        print(json.dumps(manager.get_status(args.dataset_id)))
        return EXIT_SUCCESS_ALL

    if args.command == "summary":
        summary = manager.get_summary(args.dataset_id)
        if args.json:
            print(json.dumps(summary.to_dict(), ensure_ascii=False))
        elif summary.insufficient_data:
            print("No analyzed responses yet.")
        else:
            print(summary.trend)
        return EXIT_SUCCESS_ALL

    if args.command == "review-summary":
        print(json.dumps(manager.get_review_summary(args.request_id).to_dict(), ensure_ascii=False))
        return EXIT_SUCCESS_ALL

    if args.command == "list":
        for ds in manager.list_datasets():
            print(
                f"{ds.id}  {ds.status.value:<10} {ds.analyzed_row_count}/{ds.total_row_count}  "
                f"{ds.created_at.isoformat()}  {ds.title}"
            )
        return EXIT_SUCCESS_ALL

    if args.command == "delete":
        manager.delete(args.dataset_id)
        return EXIT_SUCCESS_ALL

    if args.command == "cancel":
        ds = manager.cancel(args.dataset_id)
        print(json.dumps(ds.to_status_dict()))
        return EXIT_SUCCESS_ALL

    logger.error(f"unknown command: {args.command}")
    return EXIT_FATAL


def main(argv: list[str] | None = None) -> int:
    # None (not []) means "read sys.argv"
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)

    logger = setup_logging()
    if args.debug:
        for h in logger.handlers:
            h.setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = _resolve_config(args.config, logger)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        with _open_repository(cfg, logger) as (repo, mode):
            logger.debug(f"mode={mode}")
            manager = DatasetManager(repo, cfg)
            try:
                return _run_command(args, manager, repo, mode, logger)
            finally:
                manager.shutdown(wait=True)
    except _HANDLED_ERRORS as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
