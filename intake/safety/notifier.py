import logging
from typing import Protocol

from .risk import RiskAssessment, RiskLevel

logger = logging.getLogger(__name__)


class CrisisNotifier(Protocol):
    """Human-notification hook for clinical staff; delivery is outside this service."""

    def notify(self, conversation_id: str, crisis_event_id: str, assessment: RiskAssessment) -> None: ...


class LoggingCrisisNotifier:
    def notify(self, conversation_id: str, crisis_event_id: str, assessment: RiskAssessment) -> None:
        logger.warning(
            "CRISIS_NOTIFICATION",
            extra={
                "conversation_id": conversation_id,
                "crisis_event_id": crisis_event_id,
                "risk_level": assessment.level.label,
                "matched_categories": ",".join(assessment.matched_categories),
            },
        )


def should_notify(assessment: RiskAssessment) -> bool:
    if assessment.level == RiskLevel.CRITICAL:
        return True
    return assessment.level == RiskLevel.HIGH and assessment.flags["has_self_harm"]
