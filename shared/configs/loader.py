"""
Quality spec loading: YAML thresholds overlaid with environment overrides.

Override names are built from the model's section and field names under a
prefix, e.g. QUALITY_SPEC_PERFORMANCE_HUB_LOADING_THRESHOLD=900. Because the
names come from the model rather than the YAML file, a threshold can be
overridden even when the file leaves it at its default. A prefixed variable
that matches no field fails the load instead of being ignored.
"""
import logging
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Set, Tuple, Type, TypeVar
from functools import lru_cache
from pydantic import BaseModel, ValidationError

from .models import QualitySpec

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)

DEFAULT_SPEC_FILE = "quality_monitor.yaml"
DEFAULT_ENV_PREFIX = "QUALITY_SPEC_"

TRUE_VALUES = ('true', 'yes', 'on')
FALSE_VALUES = ('false', 'no', 'off')


class ConfigurationError(Exception):
    """Configuration loading or validation error."""
    pass


def _section_model(annotation: Any) -> Optional[Type[BaseModel]]:
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return annotation
    return None


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigLoader:
    """
    Load a spec model from a YAML file in the config directory.

    Environment overrides take precedence over YAML values.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Args:
            config_dir: Directory holding the YAML files.
                       Defaults to config/ at the project root.
        """
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        self.config_dir = Path(config_dir)
        if not self.config_dir.exists():
            raise ConfigurationError(f"Config directory not found: {self.config_dir}")

    def load_yaml(self, filename: str) -> Dict[str, Any]:
        """
        Read one YAML file; an empty file yields an empty dict.

        Raises:
            ConfigurationError: If the file is missing, unreadable or not YAML
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            raise ConfigurationError(f"Config file not found: {filepath}")

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {filepath}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Error reading {filepath}: {e}")

    def env_overrides(
        self,
        model_class: Type[BaseModel],
        env_prefix: str,
        environ: Optional[Mapping[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Collect the overrides for every field of ``model_class``.

        Args:
            model_class: Spec model whose fields name the variables
            env_prefix: Variable prefix, e.g. "QUALITY_SPEC_"
            environ: Variables to read (defaults to os.environ)

        Returns:
            Nested dict of parsed override values

        Raises:
            ConfigurationError: If a prefixed variable names no field
        """
        environ = os.environ if environ is None else environ
        overrides, consumed = self._collect(model_class, env_prefix, environ)

        unknown = sorted(
            name for name in environ
            if name.startswith(env_prefix) and name not in consumed
        )
        if unknown:
            raise ConfigurationError(
                f"Unknown {model_class.__name__} overrides: {', '.join(unknown)}"
            )
        return overrides

    def _collect(
        self,
        model_class: Type[BaseModel],
        prefix: str,
        environ: Mapping[str, str]
    ) -> Tuple[Dict[str, Any], Set[str]]:
        overrides: Dict[str, Any] = {}
        consumed: Set[str] = set()

        for name, field in model_class.model_fields.items():
            env_name = f"{prefix}{name.upper()}"
            section = _section_model(field.annotation)
            if section is not None:
                nested, nested_names = self._collect(section, f"{env_name}_", environ)
                if nested:
                    overrides[name] = nested
                consumed |= nested_names
            elif env_name in environ:
                overrides[name] = self._parse_env_value(environ[env_name])
                consumed.add(env_name)
                logger.info(f"Config override {env_name}={environ[env_name]}")

        return overrides, consumed

    def _parse_env_value(self, value: str) -> Any:
        """Type an env string as bool, int, float or str."""
        if value.lower() in TRUE_VALUES:
            return True
        if value.lower() in FALSE_VALUES:
            return False

        if value.isdigit() or (value.startswith('-') and value[1:].isdigit()):
            return int(value)

        try:
            return float(value)
        except ValueError:
            return value

    def load_and_validate(
        self,
        filename: str,
        model_class: Type[T],
        env_prefix: str = ""
    ) -> T:
        """
        Load a YAML file, apply overrides and validate into ``model_class``.

        An empty ``env_prefix`` disables environment overrides.

        Raises:
            ConfigurationError: On unreadable files, unknown overrides or
                values the model rejects
        """
        config = self.load_yaml(filename)
        if env_prefix:
            config = _deep_merge(config, self.env_overrides(model_class, env_prefix))

        try:
            return model_class(**config)
        except ValidationError as e:
            raise ConfigurationError(
                f"Configuration validation failed for {filename}:\n{e}"
            )


@lru_cache()
def get_config_loader(config_dir: Optional[str] = None) -> ConfigLoader:
    """Cached loader per config directory."""
    return ConfigLoader(config_dir=Path(config_dir) if config_dir else None)


def load_quality_spec(
    filename: str = DEFAULT_SPEC_FILE,
    config_dir: Optional[str] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX
) -> QualitySpec:
    """Load and validate the production quality spec."""
    loader = get_config_loader(config_dir)
    return loader.load_and_validate(filename, QualitySpec, env_prefix=env_prefix)
