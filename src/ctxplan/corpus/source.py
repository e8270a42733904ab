"""Load raw documents from a project directory.

Every ``*.md`` / ``*.markdown`` / ``*.txt`` file becomes a RawDocument. An
optional ``corpus.json`` manifest at the root (or in ``.ctxplan/``) supplies
metadata keyed by relative path:

    {
      "docs/charter.md": {"document_type": "project-charter",
                          "priority_tier": "critical", "quality_score": 92}
    }

Files without a manifest entry get their document type from the file stem.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import re
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from ctxplan.config import CORPUS_MANIFEST, CTXPLAN_DIR
from ctxplan.corpus.models import RawDocument

logger = logging.getLogger("ctxplan.corpus")

DOCUMENT_EXTENSIONS = {".md", ".markdown", ".txt"}
MAX_FILE_SIZE_KB = 20_000


def load_directory(
    root: Path,
    exclude_patterns: list[str] | None = None,
    progress_callback: Callable[[str, int, int], None] | None = None,
) -> list[RawDocument]:
    """Read all document files under `root` into raw documents."""
    root = Path(root).resolve()
    manifest = _read_manifest(root)
    files = _collect_files(root, exclude_patterns or [])

    documents: list[RawDocument] = []
    total = len(files)
    for i, full_path in enumerate(files):
        rel_path = full_path.relative_to(root).as_posix()
        if progress_callback:
            progress_callback(rel_path, i + 1, total)
        try:
            content = full_path.read_text(encoding="utf-8", errors="replace")
            mtime = datetime.fromtimestamp(full_path.stat().st_mtime, tz=timezone.utc)
        except OSError as e:
            logger.warning(f"Could not read {rel_path}: {e}")
            continue

        meta = dict(manifest.get(rel_path, {}))
        meta.pop("content", None)
        meta.setdefault("id", rel_path)
        meta.setdefault("name", full_path.stem)
        meta.setdefault("document_type", document_type_from_name(full_path.stem))
        meta.setdefault("last_modified", mtime)
        try:
            documents.append(RawDocument(content=content, **meta))
        except ValidationError as e:
            logger.warning(f"Invalid manifest entry for {rel_path}: {e.error_count()} error(s)")
            documents.append(
                RawDocument(
                    id=rel_path,
                    name=full_path.stem,
                    document_type=document_type_from_name(full_path.stem),
                    content=content,
                    last_modified=mtime,
                    load_error=f"invalid manifest entry ({e.error_count()} error(s))",
                )
            )
    return documents


def document_type_from_name(stem: str) -> str:
    """'Project Charter v2' -> 'project-charter-v2'."""
    slug = re.sub(r"[^a-z0-9]+", "-", stem.lower()).strip("-")
    return slug or "document"


def _read_manifest(root: Path) -> dict[str, dict]:
    for candidate in (root / CORPUS_MANIFEST, root / CTXPLAN_DIR / CORPUS_MANIFEST):
        if candidate.exists():
            try:
                data = json.loads(candidate.read_text())
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable manifest {candidate}: {e}")
                return {}
            return data if isinstance(data, dict) else {}
    return {}


def _collect_files(root: Path, exclude_patterns: list[str]) -> list[Path]:
    """Collect all document files, respecting exclusion patterns."""
    files = []
    max_size = MAX_FILE_SIZE_KB * 1024

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)

        dirnames[:] = [
            d
            for d in dirnames
            if not _should_exclude(os.path.join(rel_dir, d) if rel_dir != "." else d, exclude_patterns)
        ]

        for filename in filenames:
            rel_path = os.path.join(rel_dir, filename) if rel_dir != "." else filename
            if _should_exclude(rel_path, exclude_patterns):
                continue
            if filename == CORPUS_MANIFEST:
                continue
            if Path(filename).suffix.lower() not in DOCUMENT_EXTENSIONS:
                continue

            full_path = Path(dirpath) / filename
            try:
                if full_path.stat().st_size > max_size:
                    continue
            except OSError:
                continue
            files.append(full_path)

    return sorted(files)


def _should_exclude(path: str, patterns: list[str]) -> bool:
    """Check if a path matches any exclusion pattern."""
    path_parts = Path(path).parts
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern):
            return True
        for part in path_parts:
            if fnmatch.fnmatch(part, pattern):
                return True
    return False
