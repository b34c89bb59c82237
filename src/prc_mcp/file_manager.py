"""Low-level file system helpers used by the ledger store."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any

import yaml

from .errors import ErrorCode, LedgerError


class FileManager:
    """Wrapper around common text/YAML file operations."""

    def write_text(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except PermissionError as exc:
            raise LedgerError(
                ErrorCode.PERMISSION_DENIED,
                f"Permission denied while writing {path}",
                "Check directory permissions and try again.",
            ) from exc

    def write_yaml(self, path: Path, payload: dict[str, Any]) -> None:
        """Write YAML through a temporary sibling so readers never see a partial file."""
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
                handle.flush()
                os.fsync(handle.fileno())
            tmp_path.replace(path)
        except PermissionError as exc:
            raise LedgerError(
                ErrorCode.PERMISSION_DENIED,
                f"Permission denied while writing {path}",
                "Check directory permissions and try again.",
            ) from exc

    def load_yaml(self, path: Path) -> Any:
        """Return the raw YAML payload; `yaml.YAMLError` propagates to the caller."""
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return yaml.safe_load(handle)
        except PermissionError as exc:
            raise LedgerError(
                ErrorCode.PERMISSION_DENIED,
                f"Permission denied while reading {path}",
                "Check directory permissions and try again.",
            ) from exc

    def copy_file(self, source: Path, target: Path) -> None:
        try:
            shutil.copyfile(source, target)
        except PermissionError as exc:
            raise LedgerError(
                ErrorCode.PERMISSION_DENIED,
                f"Permission denied while copying {source} to {target}",
                "Check directory permissions and try again.",
            ) from exc

    def move_file(self, source: Path, target: Path) -> None:
        try:
            source.replace(target)
        except PermissionError as exc:
            raise LedgerError(
                ErrorCode.PERMISSION_DENIED,
                f"Permission denied while moving {source} to {target}",
                "Check directory permissions and try again.",
            ) from exc
