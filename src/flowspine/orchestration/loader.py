"""
File loader for flow definitions.

Loads FlowDefinition documents from JSON or YAML files and validates them
against the pydantic schema in :mod:`flowspine.orchestration.models`.

File Format (YAML):
    id: order-intake
    name: Order intake
    startNode: validate
    nodes:
      - id: validate
        type: validation
        config:
          rules:
            - {field: email, operator: required}
      - id: enrich
        type: transform
        config:
          mapping: {customer: $email}
    edges:
      - {id: e1, source: validate, target: enrich, condition: "isValid === true"}
"""

from pathlib import Path

import structlog
import yaml

from flowspine.core.errors import InvalidFlowDefinitionError
from flowspine.orchestration.models import FlowDefinition

logger = structlog.get_logger()

JSON_SUFFIXES = {".json"}
YAML_SUFFIXES = {".yaml", ".yml"}


def load_flow_definition(path: Path | str) -> FlowDefinition:
    """
    Load a single FlowDefinition from a JSON or YAML file.

    The format is chosen by suffix: ``.json`` or ``.yaml`` / ``.yml``.

    Raises:
        FileNotFoundError: If the file doesn't exist
        InvalidFlowDefinitionError: If the file can't be parsed, has an
            unsupported suffix, or doesn't match the schema
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Flow definition not found: {path}")

    suffix = path.suffix.lower()
    logger.debug("loader.load_definition", path=str(path), format=suffix.lstrip("."))

    content = path.read_text(encoding="utf-8")
    if suffix in JSON_SUFFIXES:
        definition = FlowDefinition.from_json(content, source=str(path))
    elif suffix in YAML_SUFFIXES:
        definition = FlowDefinition.from_yaml(content, source=str(path))
    else:
        raise InvalidFlowDefinitionError(
            f"Unsupported flow definition format: {suffix or '(none)'}",
            source=str(path),
        )

    logger.info(
        "loader.loaded",
        path=str(path),
        flow_id=definition.id,
        node_count=len(definition.nodes),
    )
    return definition


def load_flow_directory(
    directory: Path | str,
    ignore_errors: bool = False,
) -> list[FlowDefinition]:
    """
    Load every JSON/YAML flow definition under ``directory`` (recursively).

    Args:
        directory: Directory to scan
        ignore_errors: If True, skip invalid files instead of raising

    Returns:
        Definitions sorted by file path
    """
    directory = Path(directory)

    if not directory.is_dir():
        logger.warning("loader.directory_not_found", path=str(directory))
        return []

    definitions = []
    errors = []

    for path in sorted(directory.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in JSON_SUFFIXES | YAML_SUFFIXES:
            continue
        try:
            definitions.append(load_flow_definition(path))
        except InvalidFlowDefinitionError as e:
            if not ignore_errors:
                raise
            logger.warning("loader.file_error", path=str(path), error=str(e))
            errors.append((path, e))

    logger.info(
        "loader.directory_loaded",
        directory=str(directory),
        loaded=len(definitions),
        errors=len(errors),
    )
    return definitions


def flow_to_yaml(definition: FlowDefinition) -> str:
    """Serialize a definition in the same camelCase shape the loader accepts."""
    return yaml.safe_dump(definition.to_dict(), sort_keys=False, allow_unicode=True)


__all__ = ["load_flow_definition", "load_flow_directory", "flow_to_yaml"]
