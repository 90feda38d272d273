"""
Completion feedback recorder.
Persists the outcome of every matched offer attempt and aggregates past
outcomes into the historical inputs the match scorer uses.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from shared.config import config
from shared.errors import PersistenceError, ValidationError
from shared.logging import logger
from shared.models import CompletionResult


class CompletionFeedbackRecorder:
    """Write-once feedback rows; read back as scoring history."""

    def __init__(self, store, table_name: str = None, history_limit: int = None):
        self.store = store
        self.table_name = table_name or config.FEEDBACK_TABLE
        self.history_limit = history_limit or config.FEEDBACK_HISTORY_LIMIT

    def record(
        self,
        user_id: str,
        offer_id: str,
        provider: str,
        result: str,
        time_spent: int = 0,
        reward_earned: Decimal = Decimal('0'),
        user_attributes: Optional[Dict[str, Any]] = None,
        offer_attributes: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Store one feedback row. Returns the feedback id, or None if the
        write failed (feedback is training signal, never worth failing a
        postback over).
        """
        if result not in CompletionResult.ALL:
            raise ValidationError(f'Unknown completion result: {result}')

        feedback_id = str(uuid.uuid4())
        item = {
            'feedbackId': feedback_id,
            'userId': user_id,
            'offerId': offer_id,
            'provider': provider,
            'result': result,
            'timeSpent': int(time_spent or 0),
            'rewardEarned': reward_earned if result == CompletionResult.COMPLETED else Decimal('0'),
            'userAttributes': user_attributes or {},
            'offerAttributes': offer_attributes or {},
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.store.put_item(self.table_name, item)
        except PersistenceError as e:
            logger.error(f"Error recording feedback for {user_id}/{offer_id}: {e}")
            return None

        logger.info(f"Recorded {result} feedback for user {user_id}, offer {offer_id}")
        return feedback_id

    def get_historical_performance(self, provider: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Aggregate recent outcomes for a provider, and for this user on that
        provider when a user id is given. Empty dict when nothing is known.
        """
        try:
            rows = self.store.query(
                self.table_name,
                'provider',
                provider,
                index_name='byProvider',
                limit=self.history_limit,
                scan_forward=False
            )
        except PersistenceError as e:
            logger.warning(f"Error fetching historical data for {provider}: {e}")
            return {}

        if not rows:
            return {}

        completions = [r for r in rows if r.get('result') == CompletionResult.COMPLETED]
        history = {
            'totalAttempts': len(rows),
            'completedAttempts': len(completions),
            'overallSuccessRate': len(completions) / len(rows) * 100,
        }
        if completions:
            history['avgReward'] = sum(Decimal(str(c.get('rewardEarned', 0))) for c in completions) / len(completions)
            history['avgTime'] = sum(int(c.get('timeSpent', 0)) for c in completions) / len(completions)

        if user_id:
            history.update(self._user_history(rows, user_id))

        return history

    @staticmethod
    def _user_history(rows, user_id: str) -> Dict[str, Any]:
        user_rows = [r for r in rows if r.get('userId') == user_id]
        if not user_rows:
            return {}
        user_completions = [r for r in user_rows if r.get('result') == CompletionResult.COMPLETED]
        history = {
            'similarCompleted': len(user_completions),
            'providerSuccessRate': len(user_completions) / len(user_rows) * 100,
        }
        minutes = sum(int(c.get('timeSpent', 0)) for c in user_completions) / 60
        if minutes > 0:
            earned = sum(Decimal(str(c.get('rewardEarned', 0))) for c in user_completions)
            history['rewardTimeRatio'] = round(float(earned) / minutes, 3)
        return history
