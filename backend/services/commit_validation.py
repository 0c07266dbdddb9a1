"""Validation of remote commit requests.

Every check runs before any GitHub call, so a rejected payload never leaves
a partial commit behind.
"""

from __future__ import annotations

import re
from typing import Any

from backend.schemas.github import CommitPayload
from backend.services.path_service import normalize_relative_path

OWNER_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]{1,100}$")
BRANCH_RE = re.compile(r"^[A-Za-z0-9._/-]{1,255}$")
FILE_PATH_RE = re.compile(r"^(?:[A-Za-z0-9_.-]+/)*[A-Za-z0-9_.-]+$")

MESSAGE_MAX = 200
FILE_COUNT_MAX = 100
FILE_BYTES_MAX = 200_000
TOTAL_BYTES_MAX = 2_000_000


def _as_string(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) else None


def _normalize_workspace_path(value: str) -> str | None:
    normalized = normalize_relative_path(value)
    if normalized is None or normalized == ".":
        return None
    return normalized


def _normalize_file_path(value: str) -> str | None:
    normalized = normalize_relative_path(value)
    if normalized is None or normalized == "." or not FILE_PATH_RE.match(normalized):
        return None
    return normalized


def _valid_branch(branch: str) -> bool:
    return bool(BRANCH_RE.match(branch)) and ".." not in branch and not branch.startswith("/")


def validate_commit_payload(value: Any) -> CommitPayload | None:
    """Validate and normalize a raw commit body. Returns None when anything is off.

    Paths are normalized; file contents are kept byte-for-byte.
    """
    if not isinstance(value, dict):
        return None

    owner = _as_string(value.get("owner"))
    repo = _as_string(value.get("repo"))
    branch = _as_string(value.get("branch"))
    workspace_path = _as_string(value.get("workspace_path"))
    message = _as_string(value.get("message"))

    if not owner or not OWNER_REPO_RE.match(owner):
        return None
    if not repo or not OWNER_REPO_RE.match(repo):
        return None
    if not branch or not _valid_branch(branch):
        return None
    if not workspace_path:
        return None
    normalized_workspace = _normalize_workspace_path(workspace_path)
    if normalized_workspace is None:
        return None
    if not message or len(message) > MESSAGE_MAX:
        return None

    raw_files = value.get("files")
    if not isinstance(raw_files, dict) or not 0 < len(raw_files) <= FILE_COUNT_MAX:
        return None

    files: dict[str, str] = {}
    total_bytes = 0
    for raw_path, content in raw_files.items():
        if not isinstance(raw_path, str) or not isinstance(content, str):
            return None
        path = _normalize_file_path(raw_path)
        if path is None:
            return None
        size = len(content.encode("utf-8"))
        if size > FILE_BYTES_MAX:
            return None
        total_bytes += size
        if total_bytes > TOTAL_BYTES_MAX:
            return None
        files[path] = content

    return CommitPayload(
        owner=owner,
        repo=repo,
        branch=branch,
        workspace_path=normalized_workspace,
        message=message,
        files=files,
    )
