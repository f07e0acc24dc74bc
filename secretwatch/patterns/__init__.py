"""Secret detector catalog."""
from .base import PatternCatalog, PatternDefinition
from .secrets import DEFAULT_CATALOG, SecretType

__all__ = ["PatternCatalog", "PatternDefinition", "DEFAULT_CATALOG", "SecretType"]
