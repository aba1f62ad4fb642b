"""Core value types shared by the editor model and the suggestion engine."""

from .ranges import TextRange

__all__ = ["TextRange"]
