"""folio_rag.retrieval.document_loader

Document loading utilities for local book collections.

This module turns files on disk into :class:`~folio_rag.common.schemas.SourceDocument`
objects ready for ingestion. Supported formats:

- plain text (``.txt``) and Markdown (``.md``), read as UTF-8
- HTML (``.html``, ``.htm``), reduced to visible text with BeautifulSoup
- EPUB (``.epub``), chapters concatenated in spine order

The title of each document is the file stem, so re-ingesting a renamed file
creates a new source rather than replacing the old one.

Functions
---------
html_to_text
    Extract visible text from an HTML document.
load_epub_text
    Extract the text of an EPUB book in reading order.
load_source_file
    Load a single supported file as a :class:`SourceDocument`.
load_sources_from_directory
    Load every supported file of a directory.
"""

from __future__ import annotations

import logging
import posixpath
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from bs4 import BeautifulSoup

from folio_rag.common.schemas import SourceDocument

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (".txt", ".md")
HTML_EXTENSIONS = (".html", ".htm")
EPUB_EXTENSIONS = (".epub",)
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS + HTML_EXTENSIONS + EPUB_EXTENSIONS


def html_to_text(markup: str | bytes) -> str:
    """Extract visible text from an HTML document.

    ``<script>`` and ``<style>`` elements are removed; block boundaries become
    newlines so sentence segmentation is not confused by fused words.
    """
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return soup.get_text(separator="\n")


def load_epub_text(path: str | Path) -> str:
    """Extract the text of an EPUB book in reading (spine) order.

    Parameters
    ----------
    path : str or Path
        Location of the ``.epub`` file.

    Returns
    -------
    str
        Chapter texts separated by blank lines.

    Raises
    ------
    ValueError
        If the archive is not a valid EPUB container.
    """
    try:
        with zipfile.ZipFile(path) as archive:
            container = BeautifulSoup(archive.read("META-INF/container.xml"), "html.parser")
            rootfile = container.find("rootfile")
            if rootfile is None or not rootfile.get("full-path"):
                raise ValueError(f"{path}: container.xml declares no rootfile")

            opf_path = rootfile["full-path"]
            opf = BeautifulSoup(archive.read(opf_path), "html.parser")
            base_dir = posixpath.dirname(opf_path)

            manifest = {
                item.get("id"): item.get("href")
                for item in opf.find_all("item")
                if item.get("id") and item.get("href")
            }

            chapters: list[str] = []
            for itemref in opf.find_all("itemref"):
                href = manifest.get(itemref.get("idref"))
                if not href:
                    continue
                member = posixpath.normpath(posixpath.join(base_dir, href))
                try:
                    chapters.append(html_to_text(archive.read(member)))
                except KeyError:
                    logger.warning("%s: spine item %s missing from archive", path, member)
    except (zipfile.BadZipFile, KeyError) as exc:
        raise ValueError(f"{path} is not a valid EPUB file: {exc}") from exc

    return "\n\n".join(chapters)


def load_source_file(path: str | Path) -> SourceDocument:
    """Load a single supported file as a :class:`SourceDocument`.

    The document carries ``file_path`` and ``file_type`` in its metadata.

    Raises
    ------
    ValueError
        If the file extension is not supported.
    OSError
        If the file cannot be read.
    """
    path = Path(path)
    ext = path.suffix.lower()

    if ext in TEXT_EXTENSIONS:
        text = path.read_text(encoding="utf-8", errors="replace")
    elif ext in HTML_EXTENSIONS:
        text = html_to_text(path.read_bytes())
    elif ext in EPUB_EXTENSIONS:
        text = load_epub_text(path)
    else:
        raise ValueError(f"Unsupported file format: {ext or '<none>'} ({path})")

    return SourceDocument(
        title=path.stem,
        raw_text=text,
        metadata={"file_path": str(path), "file_type": ext},
    )


def load_sources_from_directory(
        directory: str | Path,
        *,
        extensions: Optional[Iterable[str]] = None,
        recursive: bool = False,
    ) -> list[SourceDocument]:
    """Load every supported file of ``directory``.

    Files are visited in sorted path order. Files that cannot be read are
    logged and skipped.

    Parameters
    ----------
    directory : str or Path
        Directory holding the books.
    extensions : Iterable[str] or None, optional
        Extensions to accept (with leading dot). Defaults to every supported
        extension.
    recursive : bool, optional
        Whether to descend into subdirectories. Defaults to ``False``.

    Returns
    -------
    list[SourceDocument]
        Loaded documents.

    Raises
    ------
    FileNotFoundError
        If ``directory`` does not exist.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Books directory not found: {directory}")

    allowed = {e.lower() for e in (extensions or SUPPORTED_EXTENSIONS)}
    pattern = "**/*" if recursive else "*"

    documents: list[SourceDocument] = []
    for path in sorted(directory.glob(pattern)):
        if not path.is_file() or path.suffix.lower() not in allowed:
            continue
        try:
            documents.append(load_source_file(path))
        except (OSError, ValueError) as exc:
            logger.warning("Skipping %s: %s", path, exc)

    logger.info("Loaded %d documents from %s", len(documents), directory)
    return documents


__all__ = [
    "SUPPORTED_EXTENSIONS",
    "html_to_text",
    "load_epub_text",
    "load_source_file",
    "load_sources_from_directory",
]
