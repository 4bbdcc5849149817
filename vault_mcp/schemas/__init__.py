"""Public schema exports."""

from .auth import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
)
from .tools import (
    AppendFileArgs,
    DeleteDirectoryArgs,
    ListDirectoryArgs,
    MoveFileArgs,
    PathArgs,
    RenameFileArgs,
    SearchNotesArgs,
    WriteFileArgs,
)

__all__ = [
    "AppendFileArgs",
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "DeleteDirectoryArgs",
    "ListDirectoryArgs",
    "MoveFileArgs",
    "PathArgs",
    "RenameFileArgs",
    "SearchNotesArgs",
    "WriteFileArgs",
]
