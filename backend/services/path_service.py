"""Repository-relative path normalization."""

from __future__ import annotations


def normalize_relative_path(value: str) -> str | None:
    """Normalize a repository-relative path.

    Backslashes become forward slashes, leading/trailing slashes are stripped
    and repeated separators collapse. An empty result is the repository root
    ``"."``. Returns None when any segment is ``.`` or ``..``.
    """
    normalized = value.replace("\\", "/").strip("/")
    if not normalized:
        return "."
    segments = [segment for segment in normalized.split("/") if segment]
    if any(segment in (".", "..") for segment in segments):
        return None
    return "/".join(segments)


def join_repo_path(root: str, child: str) -> str | None:
    """Join two repository-relative paths. Returns None if either is unsafe."""
    normalized_root = normalize_relative_path(root)
    normalized_child = normalize_relative_path(child)
    if normalized_root is None or normalized_child is None:
        return None
    if normalized_root == ".":
        return normalized_child
    if normalized_child == ".":
        return normalized_root
    return f"{normalized_root}/{normalized_child}"


def dirname(path: str) -> str:
    """Return the parent of a repository path, ``"."`` at the top level."""
    head, _, _ = path.rpartition("/")
    return head or "."


def basename(path: str) -> str:
    return path.rpartition("/")[2]
