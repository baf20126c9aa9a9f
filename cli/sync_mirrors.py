"""CLI for adding and backfilling epoch mirror columns."""

from __future__ import annotations

import argparse
import importlib
import inspect as pyinspect
import logging
import sys
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from unixmirror.config import Settings
from unixmirror.database import create_engine
from unixmirror.exceptions import SchemaUnavailable
from unixmirror.models.policy import TimestampMirrors
from unixmirror.services.ddl_service import add_mirror_columns, backfill
from unixmirror.services.mirror_service import MirrorService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def _is_mirrored_model(obj: object) -> bool:
    return (
        pyinspect.isclass(obj)
        and issubclass(obj, TimestampMirrors)
        and obj is not TimestampMirrors
        and hasattr(obj, "__table__")
    )


def resolve_models(paths: Sequence[str]) -> list[type]:
    """Resolve "module:Class" or "module" paths to mirrored model classes.

    A bare module path yields every mirrored model defined in that module.
    Unusable paths are reported and skipped.
    """
    models: list[type] = []
    for path in paths:
        module_name, _, class_name = path.partition(":")
        try:
            module = importlib.import_module(module_name)
        except ImportError as exc:
            print(f"Warning: cannot import {module_name}: {exc}")
            continue

        if class_name:
            candidate = getattr(module, class_name, None)
            if candidate is None:
                print(f"Warning: model class not found: {path}")
            elif not _is_mirrored_model(candidate):
                print(f"Warning: model does not use TimestampMirrors: {path}")
            else:
                models.append(candidate)
            continue

        found = [
            obj
            for _, obj in pyinspect.getmembers(module, _is_mirrored_model)
            if obj.__module__ == module.__name__
        ]
        if not found:
            print(f"Warning: no TimestampMirrors models in {module_name}")
        models.extend(found)

    return list(dict.fromkeys(models))


def process_model(
    engine: Engine,
    service: MirrorService,
    model: type,
    dry_run: bool,
    should_backfill: bool,
) -> None:
    """Add missing mirrors of one model and optionally backfill them."""
    print(f"Processing: {model.__module__}.{model.__name__} ({model.__table__.name})")

    with engine.begin() as conn:
        plan = add_mirror_columns(conn, service, model, dry_run=dry_run)

        if not plan.to_add and not plan.existing:
            print("  -> No datetime columns found or all excluded.")
            return

        for _source, mirror in plan.to_add:
            if dry_run:
                print(f"  + Would add column: {mirror}")
            else:
                print(f"  ✓ Added column: {mirror}")
        for source in plan.missing_sources:
            print(f"  ! Source column missing from table: {source}")
        if plan.existing:
            print(f"  -> {len(plan.existing)} column(s) already exist: {', '.join(plan.existing)}")

        if should_backfill and not dry_run:
            print("  Backfilling data...")
            for source, count in backfill(conn, service, model).items():
                if count:
                    print(f"    ✓ Backfilled {count} row(s) for {source}")


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="unixmirror-sync",
        description="Add epoch mirror columns for models using TimestampMirrors",
    )
    parser.add_argument("--database-url", help="Database URL (default: UNIXMIRROR_DATABASE_URL)")
    parser.add_argument(
        "--model",
        "-m",
        action="append",
        default=[],
        help="Model as module:Class or a module to scan (repeatable)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    parser.add_argument("--backfill", action="store_true", help="Backfill empty mirrors from sources")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    settings = Settings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})
    _configure_logging(args.debug or settings.debug)

    print("Scanning for models with TimestampMirrors...")
    models = resolve_models(args.model or settings.models)
    if not models:
        print("No models found with TimestampMirrors.")
        return 1

    print(f"Found {len(models)} model(s) to process.\n")
    engine, _ = create_engine(settings)
    service = MirrorService.from_engine(engine, settings)

    failed = False
    try:
        for model in models:
            try:
                process_model(engine, service, model, args.dry_run, args.backfill)
            except (SchemaUnavailable, SQLAlchemyError) as exc:
                failed = True
                print(f"  Error: {exc}")
            print()
    finally:
        engine.dispose()

    if failed:
        print("Finished with errors.")
        return 1
    if args.dry_run:
        print("Dry run completed. Run without --dry-run to apply changes.")
    else:
        print("All mirror columns are in sync.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
