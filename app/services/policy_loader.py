"""Policy file loading and validation.

Reads a YAML or JSON policy file and validates it into a
:class:`~app.schemas.policy.PolicyFile`. Every problem surfaces as
:class:`ConfigurationAppError` so a bad file stops the application at
startup instead of failing requests later.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from app.core.errors import ConfigurationAppError
from app.schemas.policy import PolicyFile

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = {
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
}


def _read_document(path: Path) -> Any:
    """Parse the raw document according to the file suffix.

    Raises:
        ConfigurationAppError: If the file is missing, unsupported or unparsable.
    """
    file_format = SUPPORTED_SUFFIXES.get(path.suffix.lower())
    if file_format is None:
        supported = ", ".join(sorted(SUPPORTED_SUFFIXES))
        raise ConfigurationAppError(
            code="policy_file_unsupported",
            message=f"Unsupported policy file type '{path.suffix}'. Supported: {supported}",
        )

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationAppError(
            code="policy_file_unreadable",
            message=f"Cannot read policy file {path}: {exc.strerror or exc}",
        ) from exc

    try:
        if file_format == "yaml":
            return yaml.safe_load(text)
        return json.loads(text)
    except (yaml.YAMLError, ValueError) as exc:
        raise ConfigurationAppError(
            code="policy_file_invalid",
            message=f"Cannot parse policy file {path}: {exc}",
        ) from exc


def parse_policy_document(document: Any) -> PolicyFile:
    """Validate an already-parsed policy document.

    Args:
        document: Mapping loaded from YAML/JSON (None is treated as empty).

    Returns:
        PolicyFile: Validated, immutable policy configuration.

    Raises:
        ConfigurationAppError: If the document does not satisfy the schema.
    """
    try:
        return PolicyFile.model_validate(document or {})
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationAppError(
            code="policy_file_invalid",
            message="Invalid policy configuration: " + "; ".join(problems),
            details={"context": {"errors": problems}},
        ) from exc


def load_policy_file(path: str | Path | None) -> PolicyFile:
    """Load and validate the policy file at ``path``.

    An unset path yields an empty configuration (no enforcement).
    """
    if path is None:
        logger.info("policy_loader.no_policy_file")
        return PolicyFile()

    file_path = Path(path)
    policy_file = parse_policy_document(_read_document(file_path))
    logger.info(
        "policy_loader.loaded",
        extra={
            "policy_file": str(file_path),
            "policies": len(policy_file.policies),
            "key_generators": sorted(policy_file.key_generators),
            "filter_order": policy_file.filter_order,
        },
    )
    return policy_file
