"""
Vault definition loading.

Loads the entity, satellite and relationship definitions plus engine
settings from a YAML file and validates them into a VaultConfig.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from histovault.core.errors import ConfigurationError

from .definitions import VaultConfig


def load_config_dict(data: dict[str, Any]) -> VaultConfig:
    """
    Validate a parsed vault definition.

    Args:
        data: Parsed definition

    Returns:
        Validated VaultConfig

    Raises:
        ConfigurationError: If the definition is invalid
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Vault definition must be a mapping")
    if "entities" not in data:
        raise ConfigurationError("Vault definition must contain an 'entities' section")

    try:
        return VaultConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid vault definition: {e}") from e


class VaultConfigLoader:
    """
    Loads a vault definition from a YAML file.

    Expected YAML format:
    ```yaml
    settings:
      dedup_mode: all_history
      load_time_conflict_policy: reject
      orphan_policy: sentinel

    entities:
      company:
        business_key: [object_id]
        discriminator_column: source_table
        satellites:
          company_details:
            attributes: [name, city, country]
      client:
        business_key: [client_id]

    relationships:
      company_client:
        source: company
        role: CLIENT
        driving: company
        participants:
          - alias: company
            entity: company
            key_columns: [object_id]
            discriminator_column: source_table
          - alias: client
            entity: client
            key_columns: [client_id]
    ```

    Entities, satellites and relationships may be given either as mappings
    keyed by name (as above) or as lists of objects with a `name` key.
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the vault config loader.

        Args:
            config_path: Path to the YAML definition file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Vault definition file not found: {config_path}")

    def load(self) -> VaultConfig:
        """
        Load and validate the vault definition.

        Returns:
            Validated VaultConfig

        Raises:
            ConfigurationError: If the YAML is invalid or the definition is inconsistent
        """
        with open(self.config_path) as f:
            try:
                raw = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not raw:
            raise ConfigurationError(f"Vault definition file is empty: {self.config_path}")

        return load_config_dict(self._normalize(raw))

    def _normalize(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Turn name-keyed mappings into the list form the models expect."""
        if not isinstance(raw, dict):
            raise ConfigurationError("Vault definition must be a mapping")

        data = dict(raw)
        data["entities"] = self._named_list(raw.get("entities"), "entities")
        for entity in data["entities"]:
            if "satellites" in entity:
                entity["satellites"] = self._named_list(entity["satellites"], f"{entity['name']}.satellites")
        if "relationships" in raw:
            data["relationships"] = self._named_list(raw["relationships"], "relationships")
        return data

    def _named_list(self, section: Any, section_name: str) -> list[dict[str, Any]]:
        if section is None:
            return []
        if isinstance(section, list):
            return [dict(item) for item in section]
        if isinstance(section, dict):
            items = []
            for name, body in section.items():
                body = dict(body or {})
                body.setdefault("name", name)
                items.append(body)
            return items
        raise ConfigurationError(f"Section '{section_name}' must be a mapping or a list")
