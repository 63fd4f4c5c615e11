"""In-memory storage for extracted expressions."""

from .expression_registry import ExpressionRegistry, RegistrySnapshot, RegistryStatus

__all__ = ["ExpressionRegistry", "RegistrySnapshot", "RegistryStatus"]
