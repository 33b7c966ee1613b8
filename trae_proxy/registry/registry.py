"""Model registry mapping inbound model ids to upstream model names."""
from typing import Dict

import yaml

from .model_config import ModelConfig
from ..exceptions import ServiceConfigurationError, UnsupportedModelError


class ModelRegistry:
    """Registry of supported models loaded from a YAML alias table."""

    def __init__(self, config_path: str):
        """Initialize registry by loading YAML configuration.

        Args:
            config_path: Path to models.yaml configuration file

        Raises:
            ServiceConfigurationError: If config file is invalid
        """
        self._models: Dict[str, ModelConfig] = {}
        self._aliases: Dict[str, ModelConfig] = {}
        self._load_config(config_path)

    def _load_config(self, config_path: str) -> None:
        """Load and parse YAML configuration file."""
        try:
            with open(config_path, 'r', encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ServiceConfigurationError(
                f"Model configuration file not found: {config_path}"
            )
        except yaml.YAMLError as e:
            raise ServiceConfigurationError(
                f"Invalid YAML in model configuration: {e}"
            )

        if not isinstance(data, dict) or "models" not in data:
            raise ServiceConfigurationError(
                'Configuration must have top-level "models" key'
            )

        models_dict = data["models"]
        if not isinstance(models_dict, dict):
            raise ServiceConfigurationError(
                '"models" must be a dictionary'
            )

        for model_name, model_data in models_dict.items():
            model_data = model_data or {}
            try:
                config = ModelConfig(
                    name=model_name,
                    public_name=model_data.get("public_name"),
                    aliases=list(model_data.get("aliases") or []),
                    auto_continue=bool(model_data.get("auto_continue", False)),
                )
            except (AttributeError, ValueError) as e:
                raise ServiceConfigurationError(
                    f"Invalid configuration for model '{model_name}': {e}"
                )
            self._models[model_name] = config
            for alias in [model_name, config.public_name, *config.aliases]:
                if not alias:
                    continue
                existing = self._aliases.get(alias)
                if existing is not None and existing is not config:
                    raise ServiceConfigurationError(
                        f"Alias '{alias}' is mapped to both "
                        f"'{existing.name}' and '{model_name}'"
                    )
                self._aliases[alias] = config

    def get_model_config(self, model_name: str) -> ModelConfig:
        """Resolve an inbound model id to its upstream configuration.

        Args:
            model_name: Inbound id (e.g. "claude-3-7") or upstream name

        Returns:
            ModelConfig for the requested model

        Raises:
            UnsupportedModelError: If the id is not in the alias table
        """
        if model_name not in self._aliases:
            raise UnsupportedModelError(f"Unsupported model: {model_name}")
        return self._aliases[model_name]

    def public_name(self, upstream_name: str) -> str:
        """Return the name to advertise for an upstream catalog entry."""
        config = self._models.get(upstream_name)
        return config.display_name if config else upstream_name
