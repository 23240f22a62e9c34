"""
Shared behaviour for the propbot configuration dataclasses.

Every section (cache, context, llm, bot) is a plain dataclass deriving from
BaseConfig, so it can be built from a dict, a YAML section or the process
environment, and layered in that order by load_settings().
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, Optional
import os
import yaml

_TRUE_VALUES = ('true', '1', 'yes', 'on')


def _coerce(raw: str, field_type: Any) -> Any:
    """Convert an environment string to the declared field type."""
    # Annotations are strings when a module uses postponed evaluation
    type_name = getattr(field_type, '__name__', field_type)
    if type_name == 'bool':
        return raw.strip().lower() in _TRUE_VALUES
    if type_name == 'int':
        return int(raw)
    if type_name == 'float':
        return float(raw)
    return raw


@dataclass
class BaseConfig:
    """Base for the configuration sections."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def field_names(cls) -> set:
        return {f.name for f in fields(cls)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseConfig':
        """Build a section, silently ignoring keys it does not declare."""
        known = cls.field_names()
        return cls(**{key: value for key, value in data.items() if key in known})

    @classmethod
    def env_values(cls, prefix: str) -> Dict[str, Any]:
        """
        Collect the fields set in the environment as PREFIX + FIELD_NAME.

        Only variables that are present end up in the result, so the
        dataclass defaults survive for everything else.
        """
        found = {}
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is not None:
                found[f.name] = _coerce(raw, f.type)
        return found

    @classmethod
    def from_env(cls, prefix: str = "") -> 'BaseConfig':
        """Defaults overridden by PROPBOT_CACHE_EXACT_TTL style variables."""
        return cls.from_dict(cls.env_values(prefix))

    @classmethod
    def from_yaml(cls, path: str, section: Optional[str] = None) -> 'BaseConfig':
        """
        Read a YAML file, optionally narrowing to one top-level section.

        A missing or empty section yields the defaults.
        """
        with open(path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f) or {}

        if section is not None:
            document = document.get(section) or {}
        return cls.from_dict(document)

    def merge(self, other: 'BaseConfig') -> 'BaseConfig':
        """Overlay the non-None values of ``other`` on this section."""
        values = self.to_dict()
        for key, value in other.to_dict().items():
            if value is not None:
                values[key] = value
        return self.__class__.from_dict(values)

    def with_env(self, prefix: str) -> 'BaseConfig':
        values = self.to_dict()
        values.update(self.env_values(prefix))
        return self.__class__.from_dict(values)
