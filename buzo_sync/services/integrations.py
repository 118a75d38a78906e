"""
Collaborator interfaces consumed by the entity services.

Authentication, notification delivery and AI insights live outside the
sync core. The core only needs:
- the current user id (or None when signed out)
- fire-and-forget notification calls
- a best-effort insight hook after an expense is recorded

The default implementations here log instead of delivering anything.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog


class UserIdentityProvider(ABC):
    """Resolves the signed-in user."""

    @abstractmethod
    async def get_current_user_id(self) -> Optional[str]:
        """Return the current user id, or None if no session exists."""
        pass


class StaticUserIdentityProvider(UserIdentityProvider):
    """A fixed user id. Used for offline-only sessions and tests."""

    def __init__(self, user_id: Optional[str]):
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None

    async def get_current_user_id(self) -> Optional[str]:
        return self._user_id


class Notifier(ABC):
    """Delivers budget and savings notifications to the user."""

    @abstractmethod
    async def send_budget_alert(self, budget_id: str, alert_type: str, remaining_percentage: float) -> None:
        """
        Args:
            budget_id: Budget that crossed a threshold
            alert_type: "threshold" or "limit_reached"
            remaining_percentage: Remaining amount as a percentage of the budget
        """
        pass

    @abstractmethod
    async def send_savings_progress_alert(self, goal_id: str, progress: float) -> None:
        pass

    @abstractmethod
    async def send_milestone_alert(self, goal_id: str, milestone_id: str, title: str) -> None:
        pass


class LoggingNotifier(Notifier):
    """Notifier that only writes structured log lines."""

    def __init__(self):
        self._logger = structlog.get_logger()

    async def send_budget_alert(self, budget_id: str, alert_type: str, remaining_percentage: float) -> None:
        self._logger.info(
            "budget_alert",
            budget_id=budget_id,
            alert_type=alert_type,
            remaining_percentage=round(remaining_percentage, 1),
        )

    async def send_savings_progress_alert(self, goal_id: str, progress: float) -> None:
        # Reported in 25% steps
        step = int(progress // 25) * 25
        self._logger.info("savings_progress_alert", goal_id=goal_id, progress_step=step)

    async def send_milestone_alert(self, goal_id: str, milestone_id: str, title: str) -> None:
        self._logger.info("milestone_alert", goal_id=goal_id, milestone_id=milestone_id, title=title)


class InsightGenerator(ABC):
    """Produces advice after financial activity. Failures are swallowed by callers."""

    @abstractmethod
    async def generate_for_expense(self, expense_id: str, user_id: Optional[str]) -> None:
        pass


class NullInsightGenerator(InsightGenerator):
    async def generate_for_expense(self, expense_id: str, user_id: Optional[str]) -> None:
        return None
