"""
Vault operations exposed as protocol tools.

Each tool pairs a pydantic argument model with a function over ``Vault``.
Argument validation failures surface as ``InvalidToolArguments``; vault
errors become a ``CallToolResult`` flagged with ``isError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Mapping, Optional, Type

import mcp.types as types
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from vault_mcp.clients.vault import Vault
from vault_mcp.core.errors import AppError, ConflictError, NotFoundError, ValidationError
from vault_mcp.schemas.tools import (
    AppendFileArgs,
    DeleteDirectoryArgs,
    ListDirectoryArgs,
    MoveFileArgs,
    PathArgs,
    RenameFileArgs,
    SearchNotesArgs,
    WriteFileArgs,
)

logger = logging.getLogger(__name__)


class UnknownToolError(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class InvalidToolArguments(ValueError):
    """Tool arguments failed validation against the tool's schema."""


@dataclass(slots=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[BaseModel]
    run: Callable[[Any], str]
    read_only: bool = False

    def to_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.args_model.model_json_schema(),
            annotations=types.ToolAnnotations(readOnlyHint=self.read_only),
        )


def _note_path(path: str) -> str:
    return path if PurePosixPath(path).suffix else f"{path}.md"


def _listing(paths: List[str], empty: str) -> str:
    return "\n".join(paths) if paths else empty


def _error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=message)], isError=True
    )


class VaultTools:
    """Tool table bound to a single vault."""

    def __init__(self, vault: Vault) -> None:
        self._vault = vault
        specs = [
            ToolSpec("list_files", "List every file under a vault directory.",
                     ListDirectoryArgs, self._list_files, read_only=True),
            ToolSpec("list_notes", "List markdown notes under a vault directory.",
                     ListDirectoryArgs, self._list_notes, read_only=True),
            ToolSpec("read_note", "Read a markdown note; '.md' is added when no extension is given.",
                     PathArgs, self._read_note, read_only=True),
            ToolSpec("get_file", "Read any text file from the vault.",
                     PathArgs, self._get_file, read_only=True),
            ToolSpec("write_note", "Create or overwrite a markdown note.",
                     WriteFileArgs, self._write_note),
            ToolSpec("add_file", "Create a new file; fails if it already exists.",
                     WriteFileArgs, self._add_file),
            ToolSpec("change_file", "Replace the content of an existing file; fails if it is missing.",
                     WriteFileArgs, self._change_file),
            ToolSpec("append_file", "Append text to a file, creating it if needed.",
                     AppendFileArgs, self._append_file),
            ToolSpec("delete_file", "Delete a single file.",
                     PathArgs, self._delete_file),
            ToolSpec("delete_directory", "Delete a directory; non-empty ones need recursive=true.",
                     DeleteDirectoryArgs, self._delete_directory),
            ToolSpec("move_file", "Move a file or directory to a new path.",
                     MoveFileArgs, self._move_file),
            ToolSpec("rename_file", "Rename a file within its directory.",
                     RenameFileArgs, self._rename_file),
            ToolSpec("search_notes", "Case-insensitive text search across notes.",
                     SearchNotesArgs, self._search_notes, read_only=True),
        ]
        self._specs: Dict[str, ToolSpec] = {spec.name: spec for spec in specs}

    def list_tools(self) -> List[types.Tool]:
        return [spec.to_tool() for spec in self._specs.values()]

    def call(self, name: str, arguments: Optional[Mapping[str, Any]]) -> types.CallToolResult:
        spec = self._specs.get(name)
        if spec is None:
            raise UnknownToolError(name)
        try:
            args = spec.args_model.model_validate(dict(arguments or {}))
        except PydanticValidationError as exc:
            raise InvalidToolArguments(f"Invalid arguments for {name}: {exc.errors()}") from exc

        try:
            text = spec.run(args)
        except AppError as exc:
            logger.info("Tool %s failed: %s", name, exc.reason)
            return _error_result(exc.message or exc.reason)
        except OSError as exc:
            logger.warning("Tool %s hit a filesystem error: %s", name, exc)
            return _error_result(f"{type(exc).__name__}: {exc.strerror or exc}")
        return types.CallToolResult(content=[types.TextContent(type="text", text=text)])

    def _list_files(self, args: ListDirectoryArgs) -> str:
        return _listing(self._vault.list_files(args.directory), "No files found")

    def _list_notes(self, args: ListDirectoryArgs) -> str:
        return _listing(self._vault.list_notes(args.directory), "No notes found")

    def _read_note(self, args: PathArgs) -> str:
        return self._vault.read_text(_note_path(args.path))

    def _get_file(self, args: PathArgs) -> str:
        return self._vault.read_text(args.path)

    def _write_note(self, args: WriteFileArgs) -> str:
        path = _note_path(args.path)
        self._vault.write_text(path, args.content)
        return f"Wrote {path}"

    def _add_file(self, args: WriteFileArgs) -> str:
        if self._vault.exists(args.path):
            raise ConflictError("file_exists", f"File already exists: {args.path}")
        self._vault.write_text(args.path, args.content)
        return f"Created {args.path}"

    def _change_file(self, args: WriteFileArgs) -> str:
        if not self._vault.exists(args.path):
            raise NotFoundError("file_not_found", f"File not found: {args.path}")
        self._vault.write_text(args.path, args.content)
        return f"Changed {args.path}"

    def _append_file(self, args: AppendFileArgs) -> str:
        self._vault.append_text(args.path, args.content)
        return f"Appended to {args.path}"

    def _delete_file(self, args: PathArgs) -> str:
        self._vault.delete_file(args.path)
        return f"Deleted {args.path}"

    def _delete_directory(self, args: DeleteDirectoryArgs) -> str:
        self._vault.delete_directory(args.path, recursive=args.recursive)
        return f"Deleted directory {args.path}"

    def _move_file(self, args: MoveFileArgs) -> str:
        self._vault.move(args.source, args.destination, overwrite=args.overwrite)
        return f"Moved {args.source} to {args.destination}"

    def _rename_file(self, args: RenameFileArgs) -> str:
        if "/" in args.new_name or args.new_name in (".", ".."):
            raise ValidationError("invalid_path", "new_name must be a bare file name")
        destination = str(PurePosixPath(args.path).with_name(args.new_name))
        self._vault.move(args.path, destination, overwrite=args.overwrite)
        return f"Renamed {args.path} to {destination}"

    def _search_notes(self, args: SearchNotesArgs) -> str:
        hits = self._vault.search(args.query)
        if not hits:
            return f"No notes match '{args.query}'"
        return "\n".join(
            f"{hit.path}: lines {', '.join(str(line) for line in hit.lines)}" for hit in hits
        )


__all__ = ["InvalidToolArguments", "ToolSpec", "UnknownToolError", "VaultTools"]
