"""Analysis handler registry.

Built once by the composition root. A job type without a handler is a
configuration error caught at startup by ensure_covers().
"""

from typing import Dict, Iterable, List
import logging

from reportcredits.errors import HandlerNotRegistered
from reportcredits.handlers.base import AnalysisHandler
from reportcredits.models.jobs import AnalysisJobType

logger = logging.getLogger(__name__)


class HandlerRegistry:
    def __init__(self, handlers: Iterable[AnalysisHandler] = ()):
        self._handlers: Dict[AnalysisJobType, AnalysisHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: AnalysisHandler) -> None:
        job_type = AnalysisJobType(handler.job_type)
        if job_type in self._handlers:
            raise ValueError(f"Handler for {job_type.value} already registered: {self._handlers[job_type]!r}")
        self._handlers[job_type] = handler
        logger.info(f"Registered analysis handler {handler!r}")

    def get(self, job_type: AnalysisJobType) -> AnalysisHandler:
        handler = self._handlers.get(AnalysisJobType(job_type))
        if handler is None:
            raise HandlerNotRegistered(f"No analysis handler registered for {AnalysisJobType(job_type).value}")
        return handler

    def job_types(self) -> List[AnalysisJobType]:
        return list(self._handlers)

    def ensure_covers(self, job_types: Iterable[AnalysisJobType]) -> None:
        """Fail fast if any of job_types has no handler."""
        missing = sorted(
            AnalysisJobType(jt).value for jt in job_types if AnalysisJobType(jt) not in self._handlers
        )
        if missing:
            raise HandlerNotRegistered(f"No analysis handler registered for: {', '.join(missing)}")

    def __contains__(self, job_type) -> bool:
        return AnalysisJobType(job_type) in self._handlers
