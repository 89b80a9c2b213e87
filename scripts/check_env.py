"""Check that a connector configuration is usable before starting services.

Loads ``AppSettings`` from the given ``.env`` file and reports the problems
that would otherwise only surface on the first Zoho call:

* missing or malformed values, including an unknown ``ZOHO_ENVIRONMENT`` tag;
* ``APP_ENV=production`` without ``TOKEN_ENCRYPTION_SECRET``;
* OAuth scopes that do not cover the operations the connector performs.

Example usage::

    zoho-connector-check-env --env-file /opt/zoho-connector/.env --feature bulk
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from zoho_connector.core.config import AppSettings, load_settings
from zoho_connector.services.bulk_export import BULK_CREATE_SCOPE, BULK_READ_SCOPE
from zoho_connector.services.records import CREATE_SCOPE, READ_SCOPE, UPDATE_SCOPE

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_SCOPE_ERROR = 3
EXIT_RUNTIME_ERROR = 5

FEATURE_SCOPES: dict[str, tuple[str, ...]] = {
    "records": (READ_SCOPE, CREATE_SCOPE, UPDATE_SCOPE),
    "bulk": (BULK_CREATE_SCOPE, BULK_READ_SCOPE),
}


class InsecureSettingsError(ValueError):
    """Raised when settings load but are unsafe for the target environment."""


def scope_granted(required: str, granted: Iterable[str]) -> bool:
    """Whether ``required`` is listed, directly or through its ``.ALL`` scope."""
    granted = set(granted)
    service = required.rsplit(".", 1)[0]
    return required in granted or f"{service}.ALL" in granted


def missing_scopes(settings: AppSettings, features: Iterable[str]) -> dict[str, list[str]]:
    missing: dict[str, list[str]] = {}
    for feature in features:
        absent = [
            scope
            for scope in FEATURE_SCOPES[feature]
            if not scope_granted(scope, settings.zoho.scope)
        ]
        if absent:
            missing[feature] = absent
    return missing


def _validate_settings(env_file: Path) -> AppSettings:
    """Load settings from ``env_file`` and reject unsafe production setups."""
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )
    settings = load_settings(env_file)
    if settings.is_production and not settings.security.token_encryption_secret:
        raise InsecureSettingsError(
            "TOKEN_ENCRYPTION_SECRET must be set when APP_ENV=production."
        )
    return settings


def _describe(settings: AppSettings) -> str:
    """Summarize the loaded configuration without printing secrets."""
    zoho = settings.zoho
    encrypted = "yes" if settings.security.token_encryption_secret else "no"
    return (
        f"Zoho app {zoho.user}/{zoho.app_name} on {zoho.api_base_url} "
        f"(environment={zoho.environment or 'default'}, scopes={','.join(zoho.scope)}); "
        f"database {settings.storage.database_path}, tokens encrypted: {encrypted}"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate Zoho connector settings before starting the API or worker."
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the working directory).",
    )
    parser.add_argument(
        "--feature",
        action="append",
        choices=sorted(FEATURE_SCOPES),
        help="Feature whose OAuth scopes must be granted; repeatable (default: all).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    features = args.feature or sorted(FEATURE_SCOPES)

    try:
        settings = _validate_settings(args.env_file)
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
    except InsecureSettingsError as exc:
        print(f"Settings are unsafe: {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    print(_describe(settings))

    missing = missing_scopes(settings, features)
    for feature, scopes in missing.items():
        print(
            f"ZOHO_SCOPE does not grant {', '.join(scopes)} needed for {feature}.",
            file=sys.stderr,
        )
    return EXIT_SCOPE_ERROR if missing else EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
