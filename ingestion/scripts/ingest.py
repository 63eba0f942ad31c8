"""
Document ingestion CLI script.

Extracts text from portfolio documents, chunks it, generates embeddings,
and upserts the chunks to the vector index.

Usage:
    python ingestion/scripts/ingest.py --file "./documents/resume.pdf"
    python ingestion/scripts/ingest.py --dir "./documents" --document-type Projects
    python ingestion/scripts/ingest.py --stats
"""

import argparse
import asyncio
import json
import logging
import os
import sys

# Add parent directory to path for shared imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import httpx
from pypdf import PdfReader

from persona_chat.core.config import get_settings
from persona_chat.services.embedding import EmbeddingProvider
from persona_chat.services.vector_index import VectorIndexClient
from shared.chunking import chunk_document
from shared.embedding import generate_embeddings
from shared.indexing import upsert_chunks

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".pdf", ".txt", ".md"}


def extract_text_from_pdf(file_path: str) -> str:
    """Extract text from a PDF using pypdf."""
    reader = PdfReader(file_path)
    pages = []
    for page in reader.pages:
        text = page.extract_text()
        if text:
            pages.append(text)
    return "\n\n".join(pages)


def read_document(file_path: str) -> str:
    ext = os.path.splitext(file_path)[1].lower()
    if ext == ".pdf":
        return extract_text_from_pdf(file_path)
    with open(file_path, encoding="utf-8") as f:
        return f.read()


def find_documents(directory: str) -> list[str]:
    """List supported files under ``directory``, sorted for stable ordering."""
    paths = []
    for root, _, files in os.walk(directory):
        for name in files:
            path = os.path.join(root, name)
            if os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS:
                paths.append(path)
            else:
                logger.warning("Unsupported file type, skipping: %s", path)
    return sorted(paths)


async def ingest_document(
    file_path: str,
    embedder: EmbeddingProvider,
    index: VectorIndexClient,
    document_type: str = "",
    namespace: str | None = None,
) -> int:
    """
    Full ingestion pipeline for a single document.

    Steps:
    1. Extract text.
    2. Chunk on sentence boundaries with overlap.
    3. Generate embeddings.
    4. Upsert to the vector index.

    Returns:
        Number of chunks upserted.
    """
    if not os.path.exists(file_path):
        logger.error("File not found: %s", file_path)
        return 0

    filename = os.path.basename(file_path)
    logger.info("Starting ingestion for '%s'", filename)

    text = read_document(file_path)
    logger.info("Extracted %d characters from %s", len(text), filename)
    if not text.strip():
        logger.warning("No text extracted from '%s'. Skipping.", filename)
        return 0

    chunks = chunk_document(
        text,
        source=filename,
        title=os.path.splitext(filename)[0],
        document_type=document_type,
    )
    logger.info("Created %d chunks", len(chunks))

    vectors = await generate_embeddings([c.text for c in chunks], embedder)

    succeeded = await upsert_chunks(index, chunks, vectors, source=filename, namespace=namespace)
    logger.info(
        "Ingestion complete: %d/%d chunks indexed for '%s'",
        succeeded, len(chunks), filename,
    )
    return succeeded


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    async with httpx.AsyncClient() as http_client:
        embedder = EmbeddingProvider(settings, http_client=http_client)
        index = VectorIndexClient(settings, http_client=http_client)

        if args.stats:
            stats = await index.describe_index_stats()
            print(json.dumps(stats, indent=2))
            return

        paths = [args.file] if args.file else find_documents(args.dir)
        total = 0
        for path in paths:
            total += await ingest_document(
                path,
                embedder,
                index,
                document_type=args.document_type,
                namespace=args.namespace,
            )
        logger.info("Indexed %d chunks from %d file(s).", total, len(paths))


def main():
    parser = argparse.ArgumentParser(
        description="Ingest portfolio documents into the vector index"
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--file", help="Path to a .pdf, .txt or .md file to ingest")
    group.add_argument("--dir", help="Directory to ingest recursively")
    group.add_argument(
        "--stats", action="store_true", help="Print index statistics and exit"
    )
    parser.add_argument(
        "--document-type",
        default="",
        help="Label used to group chunks in prompts (e.g. Resume, Projects)",
    )
    parser.add_argument(
        "--namespace",
        default=None,
        help="Index namespace (default: PINECONE_NAMESPACE)",
    )

    args = parser.parse_args()
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
