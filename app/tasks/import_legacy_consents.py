"""One-time migration of legacy verbal consents into the consent ledger.

Usage:
    python -m app.tasks.import_legacy_consents export.json
    python -m app.tasks.import_legacy_consents export.json --dry-run

    # Environment variables:
    DATABASE_URL - PostgreSQL connection string

Running the import twice is safe: entries already imported are detected
by their legacy id and counted as duplicates.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.consent.jurisdiction import get_jurisdiction_policy
from app.core.config import settings
from app.services.legacy_consent_import import LegacyConsentImporter

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def load_export(path: Path) -> list[dict]:
    """Load a legacy export file.

    Accepts either a JSON list of documents or an object keyed by
    document id.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        return [{"consentId": key, **value} for key, value in data.items()]
    if not isinstance(data, list):
        raise ValueError("Legacy export must be a JSON list or object")
    return data


async def run_import_task(
    path: Path,
    dry_run: bool = False,
    database_url: str | None = None,
    text_version: str | None = None,
    jurisdiction: str | None = None,
) -> dict:
    """Import a legacy export file.

    Args:
        path: JSON export of the legacy verbal-consent collection
        dry_run: Validate and count without writing
        database_url: Database URL (defaults to DATABASE_URL)
        text_version: Text version to record (defaults to the English text)
        jurisdiction: Jurisdiction to record (defaults to the configured one)

    Returns:
        Import summary
    """
    db_url = database_url or os.getenv("DATABASE_URL") or settings.database_url
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    policy = get_jurisdiction_policy(jurisdiction or settings.consent_jurisdiction)
    documents = load_export(path)
    logger.info(f"Loaded {len(documents)} legacy consent documents from {path}")

    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with session_factory() as session:
            importer = LegacyConsentImporter(
                session,
                text_version=text_version or f"{settings.consent_text_version}-en-CA",
                jurisdiction=policy.code,
            )
            summary = await importer.import_documents(documents, dry_run=dry_run)
            return summary.as_dict()
    finally:
        await engine.dispose()


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Import legacy verbal consents")
    parser.add_argument("file", type=Path, help="Legacy JSON export")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and count without writing",
    )
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    parser.add_argument("--text-version", default=None, help="Text version to record")
    parser.add_argument("--jurisdiction", default=None, help="Jurisdiction to record")
    args = parser.parse_args()

    try:
        results = asyncio.run(
            run_import_task(
                args.file,
                dry_run=args.dry_run,
                database_url=args.database_url,
                text_version=args.text_version,
                jurisdiction=args.jurisdiction,
            )
        )
        print(f"Import completed{' (dry run)' if args.dry_run else ''}: {results}")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Import failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
