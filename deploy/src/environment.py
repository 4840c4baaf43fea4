"""
Environment loading for deployments.

The service reads its configuration from ``<app_dir>/.env``. Before anything
is started the file is created from the template if needed, parsed with
python-dotenv and validated against the service's own ``Settings`` so that a
missing secret stops the deployment instead of a crash-looping service.
"""

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import structlog
from dotenv import dotenv_values
from pydantic import ValidationError

from api.src.config import Settings
from deploy.src.errors import ConfigurationError

logger = structlog.get_logger(__name__)

SERVICE_ENV_PREFIX = "CRM_"
DEPLOY_ENV_PREFIX = "CRM_DEPLOY_"


def ensure_env_file(app_dir: Path) -> Path:
    """
    Make sure ``<app_dir>/.env`` exists.

    Raises:
        ConfigurationError: If neither ``.env`` nor ``.env.example`` exists
    """
    app_dir = Path(app_dir)
    env_file = app_dir / ".env"
    template = app_dir / ".env.example"

    if env_file.is_file():
        return env_file

    if not template.is_file():
        logger.error("env_file_missing", app_dir=str(app_dir))
        raise ConfigurationError(f"No .env or .env.example file found in {app_dir}")

    shutil.copyfile(template, env_file)
    os.chmod(env_file, 0o600)
    logger.warning(
        "env_file_created_from_template",
        env_file=str(env_file),
        template=str(template),
        action="configure the generated .env before serving traffic",
    )
    return env_file


class _ExplicitSettings(Settings):
    """Service settings built only from the values passed in.

    The process environment and any ``.env`` in the working directory are
    ignored, so validation sees exactly what child processes will receive.
    """

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (init_settings,)


@dataclass
class DeploymentEnvironment:
    """Variables handed to child processes and the service settings they produce."""
    variables: Dict[str, str]
    settings: Settings


def _service_kwargs(values: Dict[str, str]) -> Dict[str, str]:
    fields = Settings.model_fields
    kwargs = {}
    for key, value in values.items():
        upper = key.upper()
        if not upper.startswith(SERVICE_ENV_PREFIX) or upper.startswith(DEPLOY_ENV_PREFIX):
            continue
        name = upper[len(SERVICE_ENV_PREFIX):].lower()
        # Blank counts as unset, matching the service's env_ignore_empty
        if name in fields and value != "":
            kwargs[name] = value
    return kwargs


def _offending_keys(error: ValidationError) -> List[str]:
    keys = []
    for err in error.errors():
        loc = err.get("loc") or ()
        key = f"{SERVICE_ENV_PREFIX}{str(loc[0]).upper()}" if loc else err["msg"]
        if key not in keys:
            keys.append(key)
    return keys


def validate_service_settings(values: Dict[str, str]) -> Settings:
    """
    Validate environment values against the service configuration.

    Only ``values`` is consulted, never the deploy tool's own process
    environment. Blank values count as unset, as they do for the service.

    Raises:
        ConfigurationError: Listing every missing or invalid key
    """
    try:
        return _ExplicitSettings(**_service_kwargs(values))
    except ValidationError as e:
        keys = _offending_keys(e)
        logger.error("service_configuration_invalid", keys=keys)
        raise ConfigurationError(
            f"Service configuration invalid: {', '.join(keys)}", keys=keys
        ) from e


def load_environment(app_dir: Path) -> DeploymentEnvironment:
    """
    Load and validate the deployment environment.

    Args:
        app_dir: Application directory holding ``.env``

    Returns:
        ``os.environ`` with the ``.env`` values layered on top (for child
        processes such as migrations and builds), and the service settings
        validated from exactly those variables

    Raises:
        ConfigurationError: If the file is missing or a required key is
            missing or invalid
    """
    env_file = ensure_env_file(app_dir)
    values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}

    merged = dict(os.environ)
    merged.update(values)

    settings = validate_service_settings(merged)
    logger.info(
        "environment_loaded",
        env_file=str(env_file),
        keys=len(values),
        environment=settings.environment,
        port=settings.port,
    )
    return DeploymentEnvironment(variables=merged, settings=settings)
