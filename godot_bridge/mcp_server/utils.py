"""Shared utilities for MCP tool modules."""

from __future__ import annotations


def b64_image(b64_data: str, mime_type: str = "image/png") -> dict[str, str]:
    """Return base64 image data as an MCP image content block dict."""
    return {"type": "image", "data": b64_data, "mimeType": mime_type}


# Lowercase markers of error lines in captured game output.
ERROR_MARKERS = ("error", "exception", "traceback", "node not found", "failed to load", "segmentation fault")


def is_error_line(line: str) -> bool:
    """True if *line* looks like an error or a crash."""
    stripped = line.strip()
    if not stripped:
        return False
    lowered = stripped.lower()
    return any(m in lowered for m in ERROR_MARKERS)


def tail_lines(chunks: list[str], limit: int) -> str:
    """Join captured output chunks and keep only the last *limit* lines."""
    text = "".join(chunks)
    if limit <= 0:
        return text
    return "\n".join(text.splitlines()[-limit:])
