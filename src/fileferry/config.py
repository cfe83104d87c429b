"""Configuration loading for the upload engine."""

from __future__ import annotations

import json
import os
from pathlib import Path

import keyring

from fileferry.models import JobConfig, UploadConfig

SERVICE_NAME = "fileferry"
KEY_NAME = "auth_key"
ENV_VAR = "FILEFERRY_AUTH_KEY"
DEFAULT_CONFIG_PATH = Path("config/upload_config.json")


def get_auth_key() -> str | None:
    """Get the job-service auth key: system keyring first, then env var.

    Returns:
        The key, or ``None`` if neither source has one.
    """
    api_key = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if api_key:
        return api_key
    return os.environ.get(ENV_VAR) or None


def _known_fields(cls: type, data: dict) -> dict:
    field_names = set(cls.__dataclass_fields__)
    return {k: v for k, v in data.items() if k in field_names}


def load_job_config(data: dict) -> JobConfig:
    """Build a :class:`JobConfig` from a ``job`` config section.

    The auth key falls back to the keyring / environment when the section
    does not carry one.
    """
    config = JobConfig(**_known_fields(JobConfig, data))
    if config.resolved_auth_key is None:
        config.auth_key = get_auth_key()
    return config


def load_upload_config(config_path: Path | None = None) -> UploadConfig:
    """Load upload configuration from JSON, falling back to defaults.

    Reads from ``config/upload_config.json`` when *config_path* is ``None``.
    If the file does not exist, returns an ``UploadConfig`` with defaults.
    Unknown keys are ignored. A ``job`` object, when present, becomes the
    nested :class:`JobConfig`.

    Args:
        config_path: Optional explicit path to upload_config.json.

    Returns:
        UploadConfig populated from the file.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    kwargs = _known_fields(UploadConfig, data)
    job_data = kwargs.pop("job", None)
    config = UploadConfig(**kwargs)

    if job_data is not None:
        config.job = load_job_config(job_data)

    return config
