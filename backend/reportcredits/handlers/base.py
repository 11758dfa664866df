"""Analysis handler capability.

One implementation per job type, registered at startup. A handler performs
the external inference and returns a structured result, or raises.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple

from reportcredits.errors import HandlerFailure
from reportcredits.models.jobs import AnalysisJobType


class AnalysisHandler(ABC):
    """Abstract base class for analysis handlers."""

    job_type: AnalysisJobType
    required_fields: Tuple[str, ...] = ()

    @abstractmethod
    async def handle(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Run the analysis. Must raise on failure."""
        pass

    def validate_result(self, result: Any) -> Dict[str, Any]:
        """Reject empty or structurally incomplete results."""
        if not isinstance(result, dict) or not result:
            raise HandlerFailure("No valid result received from AI analysis")

        missing = [field for field in self.required_fields if field not in result]
        if missing:
            raise HandlerFailure(
                f"AI analysis output is missing required fields: {', '.join(missing)}"
            )
        return result

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.job_type.value}>"
