"""Utility for verifying that a deployment's configuration is usable.

The tool performs two checks and prints a JSON report:

1. It instantiates ``AppSettings`` from the process environment plus the
   provided ``.env`` file, surfacing missing or inconsistent entries (for
   example authentication enabled without client credentials) before the
   server refuses to start.
2. It inspects the configured vault directory and the directory that will
   hold the record store.

Example usage::

    python -m scripts.check_env --env-file /opt/vault-mcp/.env

Exit codes: 0 when everything is usable, 2 when settings fail validation,
4 when the vault or storage location is unusable, 5 on unexpected errors.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from vault_mcp.clients.vault import Vault
from vault_mcp.core.config import AppSettings, load_settings

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_VAULT_ERROR = 4
EXIT_RUNTIME_ERROR = 5


def _storage_report(db_path: str) -> dict[str, Any]:
    directory = Path(db_path).resolve().parent
    existing = directory
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    return {
        "db_path": db_path,
        "directory_exists": directory.exists(),
        "writable": os.access(existing, os.W_OK),
    }


def build_report(settings: AppSettings) -> tuple[dict[str, Any], bool]:
    """Describe the effective configuration and whether it is usable."""
    vault = asdict(Vault(settings.storage.vault_path).accessibility())
    storage = _storage_report(settings.storage.db_path)
    usable = (
        vault["is_directory"] and vault["readable"] and vault["writable"] and storage["writable"]
    )
    report = {
        "environment": settings.environment,
        "server": {
            "host": settings.server.host,
            "port": settings.server.port,
            "mcp_path": settings.server.mcp_path,
        },
        "auth": {
            "enabled": settings.auth.enabled,
            "provider": settings.auth.provider,
            "callback_url": settings.callback_url() if settings.auth.enabled else None,
        },
        "vault": {"path": settings.storage.vault_path, **vault},
        "storage": storage,
        "ok": usable,
    }
    return report, usable


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate server settings and check the vault directory."
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the working directory).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    try:
        settings = load_settings(str(env_file) if env_file.exists() else None)
        report, usable = build_report(settings)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except OSError as exc:
        print(f"Unexpected error during validation: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    print(json.dumps(report, indent=2))
    if not usable:
        print("Vault or storage location is not usable.", file=sys.stderr)
        return EXIT_VAULT_ERROR
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
