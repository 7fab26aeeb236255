"""Preflight checks for a HubSpot OAuth bridge deployment.

Three things can silently break an install that used to work:

1. Required settings disappear or become malformed. ``AppSettings`` is built
   from the given ``.env`` file and the HubSpot OAuth client is constructed
   from it, so blank credentials are caught before any portal is affected.
2. The ``.env`` file drifts. A recorded SHA-256 baseline detects edits such
   as a rotated HubSpot client secret that never reached the deploy.
3. The token database stops being usable. ``check --open-store`` opens the
   SQLite store with the configured encryption secrets.

Example usages::

    # Validate required settings are present and record the expected checksum.
    python -m scripts.check_env record --env-file /opt/hubspot-bridge/.env \
        --hash-file /opt/hubspot-bridge/.env.sha256

    # Run later (e.g. from cron/systemd) to alert on drift.
    python -m scripts.check_env verify --env-file /opt/hubspot-bridge/.env \
        --hash-file /opt/hubspot-bridge/.env.sha256

    # Print the effective, redacted configuration and open the token store.
    python -m scripts.check_env check --env-file .env --open-store
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path

from pydantic import ValidationError

from app.clients.hubspot_auth import HubSpotOAuthClient
from app.clients.token_store import SQLiteTokenStore
from app.core.config import AppSettings, _load_env_file
from app.core.errors import MisconfiguredClientError, StoreError
from app.services.token_cipher import TokenCipherService

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def _compute_hash(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _load_settings(env_file: Path) -> AppSettings:
    """Build settings from ``env_file`` the same way the service does at startup."""
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )
    _load_env_file(str(env_file))
    settings = AppSettings()  # type: ignore[call-arg]
    HubSpotOAuthClient(settings.hubspot, settings.oauth)
    return settings


def _record(env_file: Path, hash_file: Path) -> int:
    checksum = _compute_hash(env_file)
    hash_file.write_text(f"{checksum}\n", encoding="utf-8")
    print(f"Recorded checksum to {hash_file} ({checksum})")
    return EXIT_OK


def _verify(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"Expected checksum file {hash_file} is missing. "
            "Re-run with the 'record' command to establish a baseline.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _compute_hash(env_file)
    if expected != actual:
        print(
            "Environment checksum mismatch!\n"
            f"  expected: {expected}\n"
            f"  actual:   {actual}\n"
            "Existing portals may need to reinstall if the client secret changed.",
            file=sys.stderr,
        )
        return EXIT_CHECKSUM_ERROR

    print("Environment checksum OK.")
    return EXIT_OK


def _summary_lines(settings: AppSettings) -> list[str]:
    security = settings.security
    token_key = "dedicated" if security.token_encryption_secret else "client secret"
    return [
        f"environment:         {settings.environment}",
        f"hubspot api:         {settings.hubspot.api_base_url}",
        f"redirect uri:        {settings.hubspot.redirect_uri}",
        f"scopes:              {' '.join(settings.oauth.scopes)}",
        f"token db:            {settings.storage.token_db_path}",
        f"token key:           {token_key}",
        f"retired token keys:  {len(security.token_encryption_previous_secrets)}",
        f"signatures required: {security.require_signature}",
        f"public base url:     {security.public_base_url or '-'}",
        f"signature prefix:    {security.signature_path_prefix or '-'}",
    ]


def _open_store(settings: AppSettings) -> None:
    security = settings.security
    cipher = TokenCipherService(
        secret=security.token_encryption_secret or settings.hubspot.client_secret,
        previous_secrets=security.token_encryption_previous_secrets,
    )
    SQLiteTokenStore(settings.storage.token_db_path, cipher)


def _check(settings: AppSettings, *, open_store: bool) -> int:
    print("\n".join(_summary_lines(settings)))
    if not settings.security.require_signature:
        print("warning: HubSpot signature enforcement is disabled.", file=sys.stderr)

    if open_store:
        try:
            _open_store(settings)
        except StoreError as exc:
            print(f"Token store unusable: {exc}", file=sys.stderr)
            return EXIT_RUNTIME_ERROR
        print("Token store OK.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate HubSpot bridge settings and detect .env drift."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    commands = {
        "record": "Validate settings and store the checksum baseline.",
        "verify": "Validate settings and compare the checksum with the baseline.",
        "check": "Validate settings and print the effective configuration.",
    }
    for name, help_text in commands.items():
        subparser = subparsers.add_parser(name, help=help_text)
        subparser.add_argument(
            "--env-file",
            default=".env",
            type=Path,
            help="Path to the environment file (default: .env in the repo root).",
        )
        if name == "check":
            subparser.add_argument(
                "--open-store",
                action="store_true",
                help="Also open the token database with the configured secrets.",
            )
        else:
            subparser.add_argument(
                "--hash-file",
                required=True,
                type=Path,
                help="Location of the checksum baseline.",
            )

    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    try:
        settings = _load_settings(env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR
    except MisconfiguredClientError as exc:
        print(f"HubSpot OAuth configuration is incomplete: {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    if args.command == "record":
        return _record(env_file, args.hash_file)
    if args.command == "verify":
        return _verify(env_file, args.hash_file)
    return _check(settings, open_store=args.open_store)


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
