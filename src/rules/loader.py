import logging
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from src.rules.models import Rules

logger = logging.getLogger(__name__)

# Rules may live in a markdown document inside a ```yaml fence
_YAML_FENCE = re.compile(r"^\s*```ya?ml\s*$(.*?)^\s*```", re.MULTILINE | re.DOTALL)


def extract_yaml(content: str) -> str:
    """Return the first fenced yaml block, or the whole content if none."""
    match = _YAML_FENCE.search(content)
    return match.group(1) if match else content


def load_rules(path: Path) -> Rules:
    """
    Load and validate the rules file.

    Raises FileNotFoundError if the file is missing.
    Raises ValueError if YAML or schema is invalid.
    """
    if not path.exists():
        raise FileNotFoundError(f"Rules file not found at: {path}")

    try:
        data = yaml.safe_load(extract_yaml(path.read_text()))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in rules file: {e}") from e

    try:
        rules = Rules.model_validate(data or {})
    except ValidationError as e:
        raise ValueError(f"Rules validation failed:\n{e}") from e

    logger.debug("Loaded rules %s from %s", rules.project.rules_version, path)
    return rules
