"""
File-backed storage for multi-step import sessions.

Each session is a set of JSON files ``{session_id}_{blob}.json`` in one
directory, which keeps large import payloads out of cookies and request state.
"""

from __future__ import annotations

import glob
import json
import os
import re
import time
import uuid
from typing import Any, Optional

import core.config as config

logger = config.logger

SESSION_BLOBS = ("data", "matches", "stats", "version", "report")
_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,64}$")


class ImportSessionStore:
    def __init__(self, base_dir: Optional[str] = None):
        self._base_dir = base_dir

    @property
    def base_dir(self) -> str:
        return self._base_dir or config.IMPORT_SESSION_DIR

    def _valid(self, session_id: Optional[str]) -> bool:
        return isinstance(session_id, str) and bool(_SESSION_ID_PATTERN.match(session_id))

    def _path(self, session_id: str, blob: str) -> str:
        return os.path.join(self.base_dir, f"{session_id}_{blob}.json")

    def _write(self, session_id: str, blob: str, value: Any) -> None:
        os.makedirs(self.base_dir, exist_ok=True)
        with open(self._path(session_id, blob), "w", encoding="utf-8") as handle:
            json.dump(value, handle)

    def _read(self, session_id: Optional[str], blob: str) -> Any:
        if not self._valid(session_id):
            return None
        path = self._path(session_id, blob)
        try:
            with open(path, encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error(f"Import session {session_id}: failed to parse {blob} file: {exc}")
            return None

    def create(self, import_data: Any, matches: Any, stats: Any, version: Optional[str]) -> str:
        session_id = str(uuid.uuid4())
        self._write(session_id, "data", import_data)
        self._write(session_id, "matches", matches)
        self._write(session_id, "stats", stats)
        self._write(session_id, "version", {"version": version})
        return session_id

    def exists(self, session_id: Optional[str]) -> bool:
        if not self._valid(session_id):
            return False
        return os.path.isfile(self._path(session_id, "data"))

    def load_data(self, session_id: Optional[str]) -> Any:
        return self._read(session_id, "data")

    def load_matches(self, session_id: Optional[str]) -> Any:
        return self._read(session_id, "matches")

    def load_stats(self, session_id: Optional[str]) -> Any:
        return self._read(session_id, "stats")

    def load_version(self, session_id: Optional[str]) -> Optional[str]:
        data = self._read(session_id, "version")
        if not isinstance(data, dict):
            return None
        return data.get("version")

    def store_report(self, session_id: Optional[str], report: Any) -> bool:
        if not self._valid(session_id):
            logger.warning("Import session report not stored: invalid session id")
            return False
        self._write(session_id, "report", report)
        return True

    def load_report(self, session_id: Optional[str]) -> Any:
        return self._read(session_id, "report")

    def report_exists(self, session_id: Optional[str]) -> bool:
        if not self._valid(session_id):
            return False
        return os.path.isfile(self._path(session_id, "report"))

    def cleanup(self, session_id: Optional[str]) -> None:
        if not self._valid(session_id):
            return
        for blob in SESSION_BLOBS:
            try:
                os.remove(self._path(session_id, blob))
            except FileNotFoundError:
                continue

    def cleanup_old_sessions(self, max_age_seconds: Optional[int] = None) -> int:
        if max_age_seconds is None:
            max_age_seconds = config.IMPORT_SESSION_MAX_AGE_SECONDS
        if not os.path.isdir(self.base_dir):
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in glob.glob(os.path.join(self.base_dir, "*.json")):
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    removed += 1
            except FileNotFoundError:
                continue
        return removed


import_sessions = ImportSessionStore()
