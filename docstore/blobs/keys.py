import re

_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._@+-]")


def safe_segment(value: str) -> str:
    """Reduce a value to a single path segment with no traversal."""
    cleaned = _UNSAFE_SEGMENT.sub("_", value.replace("\\", "/").split("/")[-1])
    cleaned = cleaned.strip(".")
    return cleaned or "_"


def document_key(prefix: str, owner_id: str, content_hash: str, filename: str) -> str:
    """Build key for a document: {prefix}users/{owner}/documents/{hash}/{filename}"""
    return (
        f"{prefix}users/{safe_segment(owner_id)}/documents/"
        f"{content_hash}/{safe_segment(filename)}"
    )


def export_key(prefix: str, owner_id: str, comparison_id: str, export_type: str) -> str:
    """Build key for an export: {prefix}users/{owner}/exports/{comparison}/comparison.{type}"""
    return (
        f"{prefix}users/{safe_segment(owner_id)}/exports/"
        f"{safe_segment(comparison_id)}/comparison.{safe_segment(export_type)}"
    )
