"""
Webhook completion handling.

Provider postbacks arrive as query parameters (CPX Research) or as a JSON
body (generic survey-completion webhook). Both end up in the same flow:

    received → validated → completed | disqualified | abandoned

Every outcome is stored once in the postbacks table, keyed by the provider
transaction id. Completed outcomes are paid through the payout router; all
outcomes are recorded as completion feedback and counted in the user's
completion stats.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
from shared.config import config
from shared.errors import AuthError, ConfigError, DuplicateError, NotFoundError, PersistenceError, ValidationError
from shared.logging import logger
from shared.models import CompletionResult, PostbackStatus, TransactionType, to_money
from shared.profiles import load_offer, load_profile
from shared.signatures import verify_secure_hash

ACK = '1'
REJECT = '0'

CPX_PROVIDER = 'cpx'


@dataclass
class PostbackResponse:
    """Plain-text answer for the provider."""
    status_code: int
    body: str


@dataclass
class CompletionEvent:
    """A validated survey outcome, whichever webhook it came from."""
    trans_id: str
    user_id: str
    offer_id: str
    provider: str
    result: str
    reward: Decimal = Decimal('0.00')
    time_spent: int = 0
    details: Dict[str, Any] = field(default_factory=dict)


def map_status(status: str) -> str:
    """Provider status code → completion result."""
    status = (status or '').strip()
    if status == PostbackStatus.COMPLETED:
        return CompletionResult.COMPLETED
    if status == PostbackStatus.DISQUALIFIED:
        return CompletionResult.DISQUALIFIED
    return CompletionResult.ABANDONED


def _param(params: Dict[str, Any], name: str) -> str:
    value = params.get(name)
    return str(value).strip() if value is not None else ''


def _time_spent(value: Any) -> int:
    try:
        return max(int(float(value or 0)), 0)
    except (TypeError, ValueError):
        return 0


class PostbackProcessor:
    """Validates provider webhooks and drives payout, feedback and stats."""

    def __init__(
        self,
        store,
        payout_router,
        feedback_recorder,
        postbacks_table: str = None,
        stats_table: str = None,
        require_hash: bool = None,
        secret: str = None
    ):
        self.store = store
        self.payout_router = payout_router
        self.feedback_recorder = feedback_recorder
        self.postbacks_table = postbacks_table or config.POSTBACKS_TABLE
        self.stats_table = stats_table or config.COMPLETION_STATS_TABLE
        self.require_hash = config.REQUIRE_POSTBACK_HASH if require_hash is None else require_hash
        self.secret = secret

    # ------------------------------------------------------------------
    # CPX Research postback (query parameters, plain-text answer)
    # ------------------------------------------------------------------

    def process(self, params: Optional[Dict[str, Any]]) -> PostbackResponse:
        """
        Handle one postback. Never raises: anything unexpected is logged and
        acknowledged so the provider stops redelivering.
        """
        try:
            return self._process(params or {})
        except Exception as e:
            logger.exception(f"Unexpected error processing postback: {e}")
            return PostbackResponse(200, ACK)

    def _process(self, params: Dict[str, Any]) -> PostbackResponse:
        user_id = _param(params, 'user_id')
        trans_id = _param(params, 'trans_id')
        status = _param(params, 'status')

        if not user_id or not trans_id or not status:
            logger.warning("Postback rejected: missing user_id, trans_id or status")
            return PostbackResponse(400, REJECT)

        try:
            self.check_signature(trans_id, _param(params, 'hash'))
        except ConfigError as e:
            logger.error(f"Postback {trans_id} cannot be verified: {e}")
            return PostbackResponse(503, REJECT)
        except AuthError as e:
            logger.warning(f"Postback {trans_id} rejected: {e}")
            return PostbackResponse(401, REJECT)

        result = map_status(status)
        try:
            reward = to_money(params.get('amount_usd') or 0) if result == CompletionResult.COMPLETED else Decimal('0.00')
        except ValidationError as e:
            logger.warning(f"Postback {trans_id} rejected: {e}")
            return PostbackResponse(400, REJECT)

        event = CompletionEvent(
            trans_id=trans_id,
            user_id=user_id,
            offer_id=_param(params, 'offer_id'),
            provider=CPX_PROVIDER,
            result=result,
            reward=reward,
            details={
                'status': status,
                'amountUsd': _param(params, 'amount_usd'),
                'amountLocal': _param(params, 'amount_local'),
                'subId': _param(params, 'sub_id'),
                'subId2': _param(params, 'sub_id_2'),
                'ipClick': _param(params, 'ip_click'),
                'type': _param(params, 'type'),
            },
        )

        logger.info(f"Postback {trans_id} for user {user_id}: {result} (${reward})")
        self.handle_completion(event)
        return PostbackResponse(200, ACK)

    def check_signature(self, trans_id: str, provided_hash: str) -> None:
        """
        Raises:
            AuthError: hash missing (when required) or mismatched
            ConfigError: no signing secret configured
        """
        if not provided_hash:
            if self.require_hash:
                raise AuthError('Missing postback hash')
            return
        if not verify_secure_hash(trans_id, provided_hash, self.secret):
            raise AuthError('Postback hash mismatch')

    # ------------------------------------------------------------------
    # Generic survey-completion webhook (JSON body, bearer token)
    # ------------------------------------------------------------------

    def process_survey_completion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Handle a JSON completion notification.

        Raises:
            ValidationError: missing fields or unknown status
        """
        user_id = _param(payload, 'user_id')
        survey_id = _param(payload, 'survey_id')
        provider = _param(payload, 'provider')
        status = _param(payload, 'status').lower()

        if not user_id or not survey_id or not provider or not status:
            raise ValidationError('Missing required fields')
        if status not in CompletionResult.ALL:
            raise ValidationError(f'Unknown status: {status}')

        reward = Decimal('0.00')
        if status == CompletionResult.COMPLETED:
            reward = to_money(payload.get('payout') or 0)

        # One row per (provider, survey, user, outcome); providers here send no transaction id
        event = CompletionEvent(
            trans_id=f'{provider}:{survey_id}:{user_id}:{status}',
            user_id=user_id,
            offer_id=survey_id,
            provider=provider,
            result=status,
            reward=reward,
            time_spent=_time_spent(payload.get('time_spent')),
            details={'providerData': payload.get('provider_data') or {}},
        )
        recorded = self.handle_completion(event)
        return {
            'success': True,
            'message': 'Webhook processed successfully' if recorded else 'Duplicate webhook ignored',
        }

    # ------------------------------------------------------------------
    # Shared completion flow
    # ------------------------------------------------------------------

    def handle_completion(self, event: CompletionEvent) -> bool:
        """
        Record the outcome, pay it if completed, then feedback and stats.
        Returns False when this transaction id was already processed.

        Raises:
            PersistenceError: the postback row itself could not be written
        """
        if not self._record_postback(event):
            logger.info(f"Duplicate postback {event.trans_id} acknowledged without processing")
            return False

        if event.result == CompletionResult.COMPLETED:
            self._pay(event)

        self._record_feedback(event)
        self.update_completion_stats(event.user_id, event.result == CompletionResult.COMPLETED)
        return True

    def _record_postback(self, event: CompletionEvent) -> bool:
        item = {
            'transId': event.trans_id,
            'userId': event.user_id,
            'offerId': event.offer_id,
            'provider': event.provider,
            'result': event.result,
            'reward': event.reward,
            'timeSpent': event.time_spent,
            'createdAt': datetime.now(timezone.utc).isoformat(),
        }
        item.update(event.details)
        try:
            self.store.put_item(self.postbacks_table, item, unique_attribute='transId')
        except DuplicateError:
            return False
        return True

    def _pay(self, event: CompletionEvent) -> None:
        if event.reward <= 0:
            logger.warning(f"Completed postback {event.trans_id} carries no reward, nothing to pay")
            return

        result = self.payout_router.process_payout(
            event.user_id,
            event.reward,
            TransactionType.SURVEY_COMPLETION,
            event.offer_id or event.trans_id
        )
        if not result.success:
            logger.error(f"Payout for postback {event.trans_id} failed: {result.error}")

        try:
            self.store.update_item(
                self.postbacks_table,
                {'transId': event.trans_id},
                updates={
                    'payoutSuccess': result.success,
                    'payoutStatus': result.status,
                    'payoutTransactionId': result.transaction_id,
                }
            )
        except PersistenceError as e:
            logger.error(f"Could not store payout outcome on postback {event.trans_id}: {e}")

    def _record_feedback(self, event: CompletionEvent) -> None:
        try:
            user_attributes = load_profile(self.store, event.user_id).attributes()
        except (NotFoundError, PersistenceError) as e:
            logger.warning(f"No profile snapshot for feedback on {event.trans_id}: {e}")
            user_attributes = {}

        offer_attributes = {'provider': event.provider}
        if event.offer_id:
            try:
                offer = load_offer(self.store, event.offer_id)
                if offer is not None:
                    offer_attributes = offer.attributes()
            except PersistenceError as e:
                logger.warning(f"No offer snapshot for feedback on {event.trans_id}: {e}")

        self.feedback_recorder.record(
            user_id=event.user_id,
            offer_id=event.offer_id or event.trans_id,
            provider=event.provider,
            result=event.result,
            time_spent=event.time_spent,
            reward_earned=event.reward,
            user_attributes=user_attributes,
            offer_attributes=offer_attributes,
        )

    def update_completion_stats(self, user_id: str, completed: bool) -> None:
        """Bump attempt counters and recompute the completion rate (percent)."""
        key = {'userId': user_id}
        try:
            self.store.update_item(
                self.stats_table,
                key,
                updates={'updatedAt': datetime.now(timezone.utc).isoformat()},
                increments={'totalAttempts': 1, 'completedSurveys': 1 if completed else 0}
            )
            stats = self.store.get_item(self.stats_table, key) or {}
            attempts = int(stats.get('totalAttempts', 0))
            if attempts:
                rate = Decimal(int(stats.get('completedSurveys', 0)) * 100) / attempts
                self.store.update_item(
                    self.stats_table,
                    key,
                    updates={'completionRate': rate.quantize(Decimal('0.01'))}
                )
        except PersistenceError as e:
            logger.error(f"Error updating completion stats for {user_id}: {e}")
