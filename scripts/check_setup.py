"""Setup diagnostics entrypoint.

This script checks, in order, that the configuration loads, the books
directory exists and holds supported files, the vector store is readable,
and the embedding provider answers a probe request.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from folio_rag.app.container import build_container
from folio_rag.common.errors import FolioError
from folio_rag.config import GlobalConfig, configure_logging
from folio_rag.retrieval.document_loader import SUPPORTED_EXTENSIONS


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check the Folio RAG setup")

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--skip-embedder",
        action="store_true",
        help="Do not send a probe request to the embedding provider.",
    )

    return parser.parse_args()


def main() -> int:
    args = parse_args()
    problems = 0

    print("1. Loading configuration...")
    cfg = GlobalConfig.load(args.config_file)
    configure_logging(cfg, level="WARNING")
    container = build_container(cfg)
    print(f"   OK: {cfg.config_path}")

    print("2. Checking books directory...")
    books_dir = Path(cfg.ingestion["books_dir"])
    if not books_dir.is_dir():
        print(f"   MISSING: {books_dir}")
        problems += 1
    else:
        books = sorted(p for p in books_dir.iterdir() if p.suffix.lower() in SUPPORTED_EXTENSIONS)
        print(f"   {len(books)} supported file(s) in {books_dir}")
        for book in books:
            print(f"      - {book.name} ({round(book.stat().st_size / 1024)}KB)")
        if not books:
            print(f"   Add books ({', '.join(SUPPORTED_EXTENSIONS)}) to this directory.")

    print("3. Checking vector store...")
    try:
        stats = container.vector_store.stats()
    except FolioError as e:
        print(f"   UNAVAILABLE: {e}")
        problems += 1
    else:
        print(f"   {stats.total_chunks} chunks from {stats.total_sources} book(s)")
        for title, entry in sorted(stats.per_source.items()):
            print(f"      - {title}: {entry.chunk_count} chunks, ~{entry.total_tokens} tokens")
        if not stats.total_chunks:
            print("   Run scripts/ingest_books.py to process your books.")

    print("4. Probing embedding provider...")
    if args.skip_embedder:
        print("   Skipped")
    else:
        try:
            vector = container.embedder.embed_query("connection test")
        except FolioError as e:
            print(f"   FAILED: {e}")
            problems += 1
        else:
            print(f"   OK: {len(vector)}-dimensional embeddings")

    print("Setup looks good!" if not problems else f"{problems} problem(s) found.")
    return 1 if problems else 0


if __name__ == "__main__":
    sys.exit(main())
