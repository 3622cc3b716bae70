#!/usr/bin/env python3
"""
Re-run ingestion for stored documents, e.g. after changing the embedding model.
Vectors from the previous model are never compared against the new one, so
documents must be re-ingested before they are searchable again. Existing
chunks are replaced unless --append is given.
"""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from acervo.core.exceptions import AcervoError
from acervo.core.logging import configure_logging
from acervo.db.database import SessionLocal
from acervo.db.models import Document
from acervo.services.document_service import DocumentService
from acervo.services.embedding_service import EmbeddingService
from acervo.services.provider_client import ProviderClient
from acervo.services.storage_service import StorageService


async def reingest(service: DocumentService, document_ids: List[str], replace: bool) -> int:
    """Ingest each document in turn; returns how many succeeded."""
    succeeded = 0
    for document_id in document_ids:
        try:
            result = await service.ingest(document_id, replace=replace)
        except AcervoError as e:
            print(f"{document_id}: failed ({e.message})")
            continue
        print(f"{document_id}: {result.chunk_count} chunks")
        succeeded += 1
    return succeeded


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Re-ingest stored documents.")
    parser.add_argument("--document-id", action="append", default=None, help="Repeatable; default is all documents.")
    parser.add_argument(
        "--append",
        dest="replace",
        action="store_false",
        help="Keep existing chunks and add the new ones after them.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    configure_logging()
    db = SessionLocal()
    try:
        document_ids = args.document_id or [row.id for row in db.query(Document.id).order_by(Document.created_at)]
        service = DocumentService(db, StorageService(), EmbeddingService(ProviderClient()))
        succeeded = asyncio.run(reingest(service, document_ids, args.replace))
    finally:
        db.close()

    print(f"Re-ingestion done. {succeeded}/{len(document_ids)} documents processed.")
    return 0 if succeeded == len(document_ids) else 1


if __name__ == "__main__":
    raise SystemExit(main())
