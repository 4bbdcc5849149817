"""Sandboxed access to the note vault on local disk."""

from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from vault_mcp.core.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class VaultPathError(ValidationError):
    """Raised when a relative path would resolve outside the vault root."""

    def __init__(self, rel_path: str) -> None:
        super().__init__("invalid_path", f"Path escapes vault: {rel_path}")


@dataclass(slots=True)
class VaultAccessibility:
    exists: bool
    is_directory: bool
    readable: bool
    writable: bool


@dataclass(slots=True)
class SearchHit:
    path: str
    lines: List[int]


def expand_date_variables(content: str, now: Optional[datetime] = None) -> str:
    """Replace ``{{date}}`` style placeholders with the current time."""
    now = now or datetime.now(timezone.utc)
    replacements = {
        "{{date}}": now.strftime("%m/%d/%Y"),
        "{{date:YYYY-MM-DD}}": now.strftime("%Y-%m-%d"),
        "{{date:YYYY-MM-DD HH:mm}}": now.strftime("%Y-%m-%d %H:%M"),
        "{{date:YYYY-MM-DD HH:mm:ss}}": now.strftime("%Y-%m-%d %H:%M:%S"),
    }
    pattern = re.compile("|".join(re.escape(token) for token in replacements))
    return pattern.sub(lambda match: replacements[match.group(0)], content)


class Vault:
    """Read, write, list and delete text files by path relative to a root."""

    def __init__(
        self, root: str, *, clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self._root = Path(root).resolve()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, rel_path: str) -> Path:
        candidate = (self._root / rel_path).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise VaultPathError(rel_path)
        return candidate

    def relative(self, path: Path) -> str:
        return path.relative_to(self._root).as_posix()

    def accessibility(self) -> VaultAccessibility:
        exists = self._root.exists()
        is_dir = self._root.is_dir()
        return VaultAccessibility(
            exists=exists,
            is_directory=is_dir,
            readable=is_dir and os.access(self._root, os.R_OK),
            writable=is_dir and os.access(self._root, os.W_OK),
        )

    def _ensure_root(self) -> None:
        if not self._root.exists():
            raise NotFoundError("vault_missing", f"Vault path does not exist: {self._root}")
        if not self._root.is_dir():
            raise ValidationError(
                "vault_not_directory", f"Vault path is not a directory: {self._root}"
            )

    def exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).exists()

    def read_text(self, rel_path: str) -> str:
        target = self.resolve(rel_path)
        if not target.is_file():
            raise NotFoundError("file_not_found", f"File not found: {rel_path}")
        try:
            return target.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("not_text", f"Not a UTF-8 text file: {rel_path}") from exc

    def write_text(self, rel_path: str, content: str, *, create_dirs: bool = True) -> None:
        self._ensure_root()
        target = self.resolve(rel_path)
        if create_dirs and target.parent != self._root:
            target.parent.mkdir(parents=True, exist_ok=True)
        elif not target.parent.exists():
            raise NotFoundError(
                "directory_not_found", f"Parent directory missing for {rel_path}"
            )
        target.write_text(expand_date_variables(content, self._clock()), encoding="utf-8")

    def append_text(self, rel_path: str, content: str) -> None:
        self._ensure_root()
        target = self.resolve(rel_path)
        if target.parent != self._root:
            target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as handle:
            handle.write(expand_date_variables(content, self._clock()))

    def _walk(self, rel_dir: str, predicate: Callable[[Path], bool]) -> List[str]:
        base = self.resolve(rel_dir)
        if not base.is_dir():
            return []
        found = [
            self.relative(path)
            for path in base.rglob("*")
            if path.is_file() and predicate(path)
        ]
        return sorted(found)

    def list_files(self, rel_dir: str = ".") -> List[str]:
        return self._walk(rel_dir, lambda _path: True)

    def list_notes(self, rel_dir: str = ".") -> List[str]:
        return self._walk(rel_dir, lambda path: path.suffix.lower() == ".md")

    def delete_file(self, rel_path: str) -> None:
        target = self.resolve(rel_path)
        if not target.exists():
            raise NotFoundError("file_not_found", f"File not found: {rel_path}")
        if not target.is_file():
            raise ValidationError("not_a_file", f"Not a file: {rel_path}")
        target.unlink()

    def delete_directory(self, rel_path: str, *, recursive: bool = False) -> None:
        target = self.resolve(rel_path)
        if target == self._root:
            raise ValidationError("invalid_path", "Refusing to delete the vault root")
        if not target.exists():
            raise NotFoundError("directory_not_found", f"Directory not found: {rel_path}")
        if not target.is_dir():
            raise ValidationError("not_a_directory", f"Not a directory: {rel_path}")
        if recursive:
            shutil.rmtree(target)
            return
        if any(target.iterdir()):
            raise ConflictError(
                "directory_not_empty",
                "Directory is not empty. Use recursive=true to delete non-empty directories.",
            )
        target.rmdir()

    def move(self, source: str, destination: str, *, overwrite: bool = False) -> None:
        src = self.resolve(source)
        dst = self.resolve(destination)
        if not src.exists():
            raise NotFoundError("file_not_found", f"Source not found: {source}")
        if src == self._root:
            raise ValidationError("invalid_path", "Refusing to move the vault root")
        if src == dst:
            return
        if src.is_dir() and src in dst.parents:
            raise ValidationError(
                "invalid_path", f"Cannot move a directory inside itself: {destination}"
            )
        if dst in src.parents:
            raise ValidationError(
                "invalid_path", f"Destination contains the source: {destination}"
            )
        if dst.exists():
            if not overwrite:
                raise ConflictError(
                    "destination_exists",
                    "Destination already exists. Use overwrite=true to allow overwriting.",
                )
            if dst.is_dir():
                shutil.rmtree(dst)
            else:
                dst.unlink()
        dst.parent.mkdir(parents=True, exist_ok=True)
        src.rename(dst)

    def search(self, query: str) -> List[SearchHit]:
        needle = query.lower()
        hits: List[SearchHit] = []
        for rel in self.list_notes("."):
            try:
                text = self.read_text(rel)
            except ValidationError:
                logger.warning("Skipping unreadable note %s during search", rel)
                continue
            lines = [
                number
                for number, line in enumerate(text.splitlines(), start=1)
                if needle in line.lower()
            ]
            if lines:
                hits.append(SearchHit(path=rel, lines=lines))
        return hits


__all__ = ["SearchHit", "Vault", "VaultAccessibility", "VaultPathError", "expand_date_variables"]
