"""
Markdown chunking for the searchable corpus.

Articles are split into chunks by packing blank-line separated blocks up to a
maximum size. Blocks longer than the limit are sliced by length.
"""

import re
from typing import List


MAX_CHUNK_SIZE = 2000


def split_markdown_into_chunks(markdown: str, max_chunk_size: int = MAX_CHUNK_SIZE) -> List[str]:
    """
    Split Markdown content into chunks of at most max_chunk_size characters.

    Args:
        markdown: Article content in Markdown
        max_chunk_size: Maximum characters per chunk

    Returns:
        List of chunk strings (paragraphs joined by a blank line)

    Examples:
        >>> split_markdown_into_chunks("uno\\n\\ndos", 100)
        ['uno\\n\\ndos']
        >>> split_markdown_into_chunks("abcdef", 4)
        ['abcd', 'ef']
    """
    blocks = [b.strip() for b in re.split(r'\n\s*\n', markdown or '')]
    blocks = [b for b in blocks if b]

    chunks = []
    current = ""

    for block in blocks:
        if len(current) + len(block) + 2 <= max_chunk_size:
            current = f"{current}\n\n{block}" if current else block
            continue

        if current:
            chunks.append(current)

        if len(block) <= max_chunk_size:
            current = block
            continue

        slices = _slice_by_length(block, max_chunk_size)
        chunks.extend(slices[:-1])
        current = slices[-1] if slices else ""

    if current:
        chunks.append(current)

    return chunks


def _slice_by_length(value: str, max_chunk_size: int) -> List[str]:
    return [value[i:i + max_chunk_size] for i in range(0, len(value), max_chunk_size)]
