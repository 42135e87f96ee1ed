"""Book ingestion entrypoint.

This script loads every supported book (``.txt``, ``.md``, ``.html``,
``.epub``) from a directory, chunks and embeds it, and writes the chunks to
the configured vector store. Each book's title is its file stem.
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
from folio_rag.common.errors import EmbeddingError
from folio_rag.config import GlobalConfig, configure_logging
from folio_rag.retrieval.document_loader import load_sources_from_directory


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest books into the Folio vector store")

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--books-dir",
        "-b",
        required=False,
        type=str,
        default=None,
        help="Directory holding the books (overrides ingestion.books_dir).",
    )

    replace = parser.add_mutually_exclusive_group()
    replace.add_argument(
        "--replace-existing",
        dest="replace_existing",
        action="store_true",
        default=None,
        help="Atomically replace the stored chunks of each book (default from config).",
    )
    replace.add_argument(
        "--upsert",
        dest="replace_existing",
        action="store_false",
        help="Upsert chunks by id instead of replacing each book.",
    )

    parser.add_argument(
        "--recursive",
        "-r",
        action="store_true",
        help="Also load books from subdirectories.",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level (overrides logging.level).",
    )

    return parser.parse_args()


def main() -> int:
    args = parse_args()

    cfg = GlobalConfig.load(args.config_file)
    configure_logging(cfg, level=args.log_level)
    container = build_container(cfg)

    books_dir = Path(args.books_dir) if args.books_dir else Path(cfg.ingestion["books_dir"])
    replace_existing = (
        cfg.ingestion["replace_existing"] if args.replace_existing is None else args.replace_existing
    )

    print(f"Loading books from: {books_dir}")
    sources = load_sources_from_directory(books_dir, recursive=args.recursive)
    if not sources:
        print("No supported book files found. Add .txt, .md, .html or .epub files and retry.")
        return 1

    mode = "replace" if replace_existing else "upsert"
    print(f"Ingesting {len(sources)} book(s) (mode: {mode})...")
    try:
        report = container.ingestion_pipeline.ingest(sources, replace_existing=replace_existing)
    except EmbeddingError as e:
        print(f"Ingestion aborted: {e}", file=sys.stderr)
        return 2

    for entry in report.sources:
        if entry.skipped:
            status = "skipped"
        elif entry.error:
            status = f"FAILED ({entry.error})"
        else:
            status = f"{entry.chunks_written}/{entry.chunks_planned} chunks"
            if entry.failed_chunks:
                status += f", {entry.failed_chunks} failed"
        print(f"  - {entry.title}: {status}")

    stats = container.vector_store.stats()
    print(
        f"Ingestion complete! Wrote {report.total_chunks_written} chunks. "
        f"Store now holds {stats.total_chunks} chunks from {stats.total_sources} book(s)."
    )
    return 1 if report.failed_sources else 0


if __name__ == "__main__":
    sys.exit(main())
