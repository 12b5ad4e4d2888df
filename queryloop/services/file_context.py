"""Per-conversation file context, persisted as small JSON documents.

Each conversation's current file set lives under the key
``conversation_files_<conversation_id>``. A write replaces the stored set;
the most recent file-analysis submission defines the context.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from uuid import uuid4

from queryloop.config import settings
from queryloop.models.conversation import UploadedFileRef
from queryloop.services.logger import logger

KEY_PREFIX = "conversation_files_"
_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def storage_key(conversation_id: str) -> str:
    if not _SAFE_ID.match(conversation_id or ""):
        raise ValueError(f"Invalid conversation id: {conversation_id!r}")
    return f"{KEY_PREFIX}{conversation_id}"


class FileContextStore:
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.file_context_dir)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, conversation_id: str) -> Path:
        return self._root / f"{storage_key(conversation_id)}.json"

    def write(self, conversation_id: str, files: list[UploadedFileRef]) -> None:
        path = self._path(conversation_id)
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.tmp")
        payload = [f.to_dict() for f in files]
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)

    def read(self, conversation_id: str) -> list[UploadedFileRef]:
        path = self._path(conversation_id)
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable file context for {conversation_id}: {e}")
            return []
        if not isinstance(payload, list):
            return []
        return [UploadedFileRef.from_dict(item) for item in payload if isinstance(item, dict)]

    def clear(self, conversation_id: str) -> None:
        # Source files stay in upload storage; only the association is dropped.
        self._path(conversation_id).unlink(missing_ok=True)
