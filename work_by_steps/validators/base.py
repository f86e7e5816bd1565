from abc import ABC, abstractmethod
from typing import Optional

from ..core.quality_gates import GateReport


class BaseValidator(ABC):
    """Base class for all quality gate validators."""

    @abstractmethod
    def validate(self, document: str, reference: Optional[str] = None) -> GateReport:
        """
        Validate a document for a quality gate.

        Args:
            document: Markdown content being gated.
            reference: Optional source document the content must trace back to.

        Returns:
            GateReport with a 0-100 score and the individual checks.
        """
        pass

    def __call__(self, document: str, reference: Optional[str] = None) -> GateReport:
        return self.validate(document, reference)
