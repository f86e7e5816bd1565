from .base import BaseValidator
from .implementations import ArchitectureValidator, SecurityGateValidator

__all__ = ["BaseValidator", "ArchitectureValidator", "SecurityGateValidator"]
