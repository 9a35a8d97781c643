"""IR schema and consistency validation."""

from .validator import IRValidator, validate_ir

__all__ = ["IRValidator", "validate_ir"]
