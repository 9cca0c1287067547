"""
Nexus Scheduling Agent - File Handler
Save uploaded knowledge documents and split their text into retrieval chunks
"""

import os
import re
from collections import Counter
from pathlib import Path
from typing import List, Tuple

import aiofiles

from errors import DocumentRejected
from models import KnowledgeChunk


# Supported file extensions
SUPPORTED_EXTENSIONS = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown"
}

DOCUMENT_CHAPTER = "User Documents"

KEYWORD_STOP_WORDS = {
    "about", "after", "also", "because", "been", "before", "being", "could", "each",
    "from", "have", "into", "more", "most", "only", "other", "over", "should", "some",
    "such", "than", "that", "their", "them", "then", "there", "these", "they", "this",
    "very", "what", "when", "where", "which", "while", "will", "with", "would", "your",
}


def validate_filename(filename: str) -> Tuple[bool, str]:
    """Check the upload is a plain file name with a supported extension."""
    name = Path(filename or "").name
    if not name or name != filename:
        return False, "Filename must not contain a path"

    ext = Path(name).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        return False, f"Unsupported file type. Allowed: {', '.join(SUPPORTED_EXTENSIONS.keys())}"

    return True, "Valid"


def document_id_for(filename: str) -> str:
    """Stable id from the file name, e.g. ``Recruiting Notes.md`` -> ``recruiting_notes``."""
    stem = Path(filename).stem.lower()
    return re.sub(r"[^a-z0-9]+", "_", stem).strip("_") or "document"


async def save_uploaded_file(content: bytes, filename: str, upload_dir: str) -> Tuple[str, int]:
    """Save file to the upload folder, return path and size."""
    os.makedirs(upload_dir, exist_ok=True)
    file_path = os.path.join(upload_dir, filename)

    async with aiofiles.open(file_path, 'wb') as f:
        await f.write(content)

    return file_path, len(content)


def extract_text_from_pdf(file_path: str) -> str:
    """Extract text from PDF file."""
    from pypdf import PdfReader
    from pypdf.errors import PdfReadError

    try:
        reader = PdfReader(file_path)
        text_parts = [text for text in (page.extract_text() for page in reader.pages) if text]
    except PdfReadError as e:
        raise DocumentRejected(f"Could not read PDF {Path(file_path).name}: {e}") from e

    return "\n\n".join(text_parts)


async def extract_text_from_txt(file_path: str) -> str:
    """Read text from TXT or MD file."""
    try:
        async with aiofiles.open(file_path, 'r', encoding='utf-8') as f:
            return await f.read()
    except UnicodeDecodeError as e:
        raise DocumentRejected(f"{Path(file_path).name} is not UTF-8 text") from e


async def read_file_content(file_path: str) -> str:
    """Extract text from any supported file type."""
    ext = Path(file_path).suffix.lower()

    if ext == ".pdf":
        return extract_text_from_pdf(file_path)
    elif ext in [".txt", ".md"]:
        return await extract_text_from_txt(file_path)
    raise DocumentRejected(f"Unsupported file type: {ext}")


# ============================================
# CHUNKING
# ============================================

def split_into_chunks(text: str, max_chars: int = 1500) -> List[str]:
    """
    Paragraph-bounded chunks of at most ``max_chars``.

    Paragraphs are packed together until the next one would overflow; a single
    paragraph longer than the limit is cut on line or word boundaries.
    """
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]
    chunks: List[str] = []
    current = ""

    for paragraph in paragraphs:
        while len(paragraph) > max_chars:
            cut = paragraph.rfind("\n", 0, max_chars)
            if cut <= 0:
                cut = paragraph.rfind(" ", 0, max_chars)
            if cut <= 0:
                cut = max_chars
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:cut].strip())
            paragraph = paragraph[cut:].strip()

        if not paragraph:
            continue
        if current and len(current) + 2 + len(paragraph) > max_chars:
            chunks.append(current)
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph

    if current:
        chunks.append(current)
    return chunks


def extract_keywords(text: str, limit: int = 6) -> List[str]:
    words = [w for w in re.findall(r"[a-z]{4,}", text.lower()) if w not in KEYWORD_STOP_WORDS]
    return [word for word, _ in Counter(words).most_common(limit)]


def document_to_chunks(document_id: str, filename: str, text: str, max_chars: int = 1500) -> List[KnowledgeChunk]:
    parts = split_into_chunks(text, max_chars)
    stem = Path(filename).stem
    return [
        KnowledgeChunk(
            id=f"{document_id}:{i}",
            title=stem if len(parts) == 1 else f"{stem} (part {i})",
            chapter=DOCUMENT_CHAPTER,
            content=part,
            keywords=extract_keywords(part),
            document_id=document_id,
        )
        for i, part in enumerate(parts, start=1)
    ]


async def ingest_document(content: bytes, filename: str, upload_dir: str, max_chars: int = 1500) -> Tuple[str, List[KnowledgeChunk], str]:
    """Validate, save and chunk an upload. Returns the document id, its chunks and the saved path."""
    valid, reason = validate_filename(filename)
    if not valid:
        raise DocumentRejected(reason)

    file_path, _ = await save_uploaded_file(content, filename, upload_dir)
    text = await read_file_content(file_path)
    if not text.strip():
        raise DocumentRejected(f"{filename} contains no extractable text")

    document_id = document_id_for(filename)
    return document_id, document_to_chunks(document_id, filename, text, max_chars), file_path


def format_size(size_bytes: int) -> str:
    """Format bytes to human readable."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"
