"""
Text cleaning utilities for help documents and snippets.
"""
import re
from typing import Dict, List, Tuple

_HEADING_RE = re.compile(r'^(#{1,3})\s+(.+?)\s*#*\s*$')
_FRONT_MATTER_RE = re.compile(r'^---\s*\n(.*?)\n---\s*\n?', re.DOTALL)


def clean_doc_text(text: str) -> str:
    """
    Normalize whitespace in document text.
    Preserves paragraph breaks so heading detection still works.

    Args:
        text: Raw text

    Returns:
        Cleaned text
    """
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = ''.join(char for char in text if char.isprintable() or char.isspace())
    # Collapse runs of blank lines
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def strip_markdown(text: str) -> str:
    """Remove markdown markup, keeping the readable words."""
    text = re.sub(r'```.*?```', ' ', text, flags=re.DOTALL)
    text = re.sub(r'`([^`]*)`', r'\1', text)
    text = re.sub(r'!\[([^\]]*)\]\([^)]*\)', r'\1', text)
    text = re.sub(r'\[([^\]]*)\]\([^)]*\)', r'\1', text)
    text = re.sub(r'^#{1,6}\s*', '', text, flags=re.MULTILINE)
    text = re.sub(r'^\s*[-*+]\s+', '', text, flags=re.MULTILINE)
    text = re.sub(r'[*_]{1,3}([^*_]+)[*_]{1,3}', r'\1', text)
    return re.sub(r'\s+', ' ', text).strip()


def split_markdown_sections(title: str, content: str) -> List[Tuple[str, str]]:
    """
    Split markdown content into heading-delimited sections.

    Each section is returned as (header_path, body) where header_path joins the
    document title with the nested headings, e.g. "Workspace > Creating a workspace".
    Text before the first heading belongs to a section whose path is the title.
    A heading that repeats the document title is folded into the title section.

    Args:
        title: Document title, used as the root of every header path
        content: Markdown body

    Returns:
        Ordered list of (header_path, body) pairs; sections with empty bodies are dropped
    """
    sections: List[Tuple[str, str]] = []
    stack: List[Tuple[int, str]] = []
    current_lines: List[str] = []

    def header_path() -> str:
        parts = [title] + [name for _, name in stack if name.lower() != title.lower()]
        return " > ".join(parts)

    def flush():
        body = "\n".join(current_lines).strip()
        if body:
            sections.append((header_path(), body))
        current_lines.clear()

    for line in clean_doc_text(content).split('\n'):
        match = _HEADING_RE.match(line)
        if not match:
            current_lines.append(line)
            continue

        flush()
        level = len(match.group(1))
        while stack and stack[-1][0] >= level:
            stack.pop()
        stack.append((level, match.group(2).strip()))

    flush()
    return sections


def make_snippet(text: str, max_words: int = 30) -> str:
    """Return the first max_words words of the readable text, with an ellipsis if cut."""
    words = strip_markdown(text).split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + "..."


def is_low_quality_body(text: str, min_chars: int = 80) -> bool:
    """
    Check whether a section body is too thin to answer with.

    A body is low quality when its readable text is shorter than min_chars
    or consists only of a heading-like single line.
    """
    readable = strip_markdown(text)
    if len(readable) < min_chars:
        return True
    return '\n' not in text.strip() and not re.search(r'[.!?:]', readable)


def parse_front_matter(text: str) -> Tuple[Dict[str, object], str]:
    """
    Parse a simple YAML-like front matter block.

    Supports "key: value" lines and "key: [a, b]" inline lists, which is all the
    bundled documents use.

    Returns:
        (metadata, body) where body is the text after the front matter
    """
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text

    metadata: Dict[str, object] = {}
    for line in match.group(1).splitlines():
        if ':' not in line:
            continue
        key, value = line.split(':', 1)
        value = value.strip()
        if value.startswith('[') and value.endswith(']'):
            metadata[key.strip()] = [
                item.strip().strip('"\'') for item in value[1:-1].split(',') if item.strip()
            ]
        else:
            metadata[key.strip()] = value.strip('"\'')

    return metadata, text[match.end():]
