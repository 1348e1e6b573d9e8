"""
Offline ingestion job for the TF-IDF search backend.

Reads plain-text, Markdown and PDF files, splits each one into overlapping
chunks and writes a JSON corpus (a list of ``{"content", "source"}`` records)
that ``TfidfVectorStore.from_json`` loads at startup.  PDF pages are joined
with newlines before splitting, so a chunk may span a page break.  This runs
once as a batch job and is not part of the request path.

Usage:
  python -m rag_backend.ingest docs/ notes.md course.pdf --out corpus.json
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List

from langchain_text_splitters import CharacterTextSplitter
from pypdf import PdfReader

logger = logging.getLogger("rag_backend.ingest")

SUPPORTED_SUFFIXES = (".txt", ".md", ".pdf")
CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200


def iter_source_files(paths: Iterable[str]) -> List[Path]:
    """Expand files and directories into a sorted list of supported files."""
    files: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES)
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return sorted(set(files))


def read_text(path: Path) -> str:
    if path.suffix.lower() == ".pdf":
        reader = PdfReader(str(path))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    return path.read_text(encoding="utf-8")


def chunk_file(path: Path, splitter: CharacterTextSplitter) -> List[Dict[str, str]]:
    text = read_text(path)
    return [{"content": chunk, "source": str(path)} for chunk in splitter.split_text(text) if chunk.strip()]


def build_corpus(
    paths: Iterable[str],
    *,
    chunk_size: int = CHUNK_SIZE,
    chunk_overlap: int = CHUNK_OVERLAP,
) -> List[Dict[str, str]]:
    splitter = CharacterTextSplitter(separator="\n", chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    corpus: List[Dict[str, str]] = []
    for path in iter_source_files(paths):
        records = chunk_file(path, splitter)
        logger.info(f"{path}: {len(records)} chunk(s)")
        corpus.extend(records)
    return corpus


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Chunk documents into a JSON corpus for the RAG backend.")
    parser.add_argument("paths", nargs="+", help="Files or directories (.txt, .md, .pdf) to ingest")
    parser.add_argument("--out", default="corpus.json", help="Output JSON file (default: corpus.json)")
    parser.add_argument("--chunk-size", type=int, default=CHUNK_SIZE)
    parser.add_argument("--chunk-overlap", type=int, default=CHUNK_OVERLAP)
    args = parser.parse_args(argv)

    logging.basicConfig(level="INFO", format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    corpus = build_corpus(args.paths, chunk_size=args.chunk_size, chunk_overlap=args.chunk_overlap)
    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(corpus, f, ensure_ascii=False, indent=2)
    logger.info(f"Documents created: {len(corpus)} -> {args.out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
