"""Argument schemas for the vault tools exposed over the protocol."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ListDirectoryArgs(_ToolArgs):
    directory: str = Field(".", description="Directory relative to the vault root.")


class PathArgs(_ToolArgs):
    path: str = Field(..., min_length=1, description="File path relative to the vault root.")


class WriteFileArgs(PathArgs):
    content: str = Field(..., description="Full file content; {{date}} variables are expanded.")


class AppendFileArgs(PathArgs):
    content: str = Field(..., description="Text appended to the end of the file.")


class DeleteDirectoryArgs(PathArgs):
    recursive: bool = Field(False, description="Delete non-empty directories.")


class MoveFileArgs(_ToolArgs):
    source: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    overwrite: bool = False


class RenameFileArgs(_ToolArgs):
    path: str = Field(..., min_length=1)
    new_name: str = Field(..., min_length=1, description="New file name, without directories.")
    overwrite: bool = False


class SearchNotesArgs(_ToolArgs):
    query: str = Field(..., min_length=1)


__all__ = [
    "AppendFileArgs",
    "DeleteDirectoryArgs",
    "ListDirectoryArgs",
    "MoveFileArgs",
    "PathArgs",
    "RenameFileArgs",
    "SearchNotesArgs",
    "WriteFileArgs",
]
