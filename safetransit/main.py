"""Command-line entry point for the Safe Transit API server"""

import argparse
from typing import List, Optional

import uvicorn

from safetransit.config import Settings, settings
from safetransit.exceptions import ConfigurationError
from safetransit.governance.crypto_service import DEFAULT_SECRET, PLACEHOLDER_KEY
from safetransit.logging_config import get_logger, setup_logging

APP_FACTORY = "safetransit.api.app:build_default_app"


def placeholder_secrets(app_settings: Settings) -> List[str]:
    """Environment names of security settings still at their shipped placeholder."""
    security = app_settings.security
    checks = {
        "SECURITY_JWT_SECRET": security.jwt_secret == DEFAULT_SECRET,
        "SECURITY_SESSION_SECRET": security.session_secret == DEFAULT_SECRET,
        "SECURITY_ANONYMIZATION_SALT": security.anonymization_salt == DEFAULT_SECRET,
        "SECURITY_ENCRYPTION_KEY": security.encryption_key == PLACEHOLDER_KEY,
    }
    return [name for name, placeholder in checks.items() if placeholder]


def check_configuration(app_settings: Settings) -> List[str]:
    """
    Log a configuration summary and report placeholder secrets.

    Placeholders only produce warnings outside production.

    Returns:
        Names of settings left at a placeholder

    Raises:
        ConfigurationError: Placeholder secrets in production
    """
    logger = get_logger(__name__)

    # Secrets and keys are never logged
    logger.info(
        "configuration_loaded",
        environment=app_settings.environment,
        database_host=app_settings.database.host,
        database_port=app_settings.database.port,
        database_name=app_settings.database.name,
        rate_limit_enabled=app_settings.reporting.rate_limit_enabled,
        log_level=app_settings.logging.level,
        log_format=app_settings.logging.format,
    )

    placeholders = placeholder_secrets(app_settings)
    if placeholders and app_settings.environment == "production":
        raise ConfigurationError(
            "Placeholder secrets configured in production",
            details={"settings": placeholders}
        )
    for name in placeholders:
        logger.warning("placeholder_secret_in_use", setting=name)
    return placeholders


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Safe Transit API server")
    parser.add_argument("--host", default=None, help="Bind address (defaults to API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (defaults to API_PORT)")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes (defaults to API_WORKERS)"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart on code changes; runs a single worker"
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Check the configuration and exit without serving"
    )
    return parser


def run_api_server(argv: Optional[List[str]] = None) -> int:
    """
    Serve the API with uvicorn.

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    setup_logging()
    logger = get_logger(__name__)
    logger.info("application_starting", environment=settings.environment, debug=settings.debug)

    try:
        check_configuration(settings)
    except ConfigurationError as e:
        logger.error("configuration_rejected", error=e.message, **e.details)
        return 1
    if args.check_config:
        return 0

    host = args.host or settings.api.host
    port = args.port or settings.api.port
    reload = args.reload or settings.debug
    workers = 1 if reload else (args.workers or settings.api.workers)

    logger.info("starting_api_server", host=host, port=port, workers=workers, reload=reload)
    uvicorn.run(
        APP_FACTORY,
        factory=True,
        host=host,
        port=port,
        workers=workers,
        reload=reload,
        log_level=settings.logging.level.lower()
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(run_api_server())
