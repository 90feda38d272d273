"""
Microtask service: listing, submission validation, review and payout.

Submission payloads are parsed into a variant per task type so their shape
is checked once at the edge. Unknown task types keep an opaque field map.

Completion lifecycle:
    submitted → approved | pending_review → approved | rejected
Payout lifecycle (approved only):
    pending → processing → completed | failed
A failed payout whose amount the router kept in the pending ledger is
flagged payoutHeld and still counts as pending payout.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
from shared.config import config
from shared.errors import ConflictError, NotFoundError, QualifyFirstError, ValidationError
from shared.logging import logger
from shared.models import (
    MicrotaskPayoutStatus,
    MicrotaskStatus,
    TaskType,
    TransactionType,
    _as_list,
    _pick,
    clamp,
    parse_timestamp,
    to_money,
)
from shared.payouts import PayoutResult, PayoutStatus
from shared.profiles import load_profile

# Validation penalties
MISSING_FIELDS_WEIGHT = 0.5
SHORT_TEXT_PENALTY = 0.2
FEW_TAGS_PENALTY = 0.3
RATING_OUT_OF_SCALE_PENALTY = 0.2


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_missing(value: Any) -> bool:
    return value is None or value == '' or value == [] or value == {}


# ----------------------------------------------------------------------
# Submission variants
# ----------------------------------------------------------------------

@dataclass
class LinkValidationSubmission:
    url: str
    is_valid: Optional[bool] = None
    notes: str = ''
    extra: Dict[str, Any] = field(default_factory=dict)

    kind = TaskType.LINK_VALIDATION

    def fields(self) -> Dict[str, Any]:
        return {**self.extra, 'url': self.url, 'is_valid': self.is_valid, 'notes': self.notes}


@dataclass
class TranscriptionSubmission:
    text: str
    extra: Dict[str, Any] = field(default_factory=dict)

    kind = TaskType.TEXT_TRANSCRIPTION

    def fields(self) -> Dict[str, Any]:
        return {**self.extra, 'text': self.text}


@dataclass
class FeedbackSubmission:
    rating: Any = None
    text: str = ''
    extra: Dict[str, Any] = field(default_factory=dict)

    kind = TaskType.FEEDBACK_COLLECTION

    def fields(self) -> Dict[str, Any]:
        return {**self.extra, 'rating': self.rating, 'text': self.text}


@dataclass
class TaggingSubmission:
    tags: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    kind = TaskType.IMAGE_TAGGING

    def fields(self) -> Dict[str, Any]:
        return {**self.extra, 'tags': list(self.tags)}


@dataclass
class GenericSubmission:
    """Any other task type; the payload is kept as-is."""
    task_type: str
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return self.task_type

    def fields(self) -> Dict[str, Any]:
        return dict(self.values)

    @property
    def text(self) -> Optional[str]:
        value = self.values.get('text')
        return value if isinstance(value, str) else None

    @property
    def tags(self) -> Optional[List[Any]]:
        value = self.values.get('tags')
        return value if isinstance(value, list) else None

    @property
    def rating(self) -> Any:
        return self.values.get('rating')


Submission = Union[
    LinkValidationSubmission,
    TranscriptionSubmission,
    FeedbackSubmission,
    TaggingSubmission,
    GenericSubmission,
]


def _rest(data: Dict[str, Any], *known: str) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in known}


def parse_submission(task_type: str, data: Any) -> Submission:
    """
    Build the submission variant for a task type.

    Raises:
        ValidationError: data is not an object
    """
    if not isinstance(data, dict):
        raise ValidationError('submission_data must be an object')

    if task_type == TaskType.LINK_VALIDATION:
        is_valid = data.get('is_valid')
        return LinkValidationSubmission(
            url=str(data.get('url') or ''),
            is_valid=is_valid if isinstance(is_valid, bool) else None,
            notes=str(data.get('notes') or ''),
            extra=_rest(data, 'url', 'is_valid', 'notes'),
        )
    if task_type == TaskType.TEXT_TRANSCRIPTION:
        return TranscriptionSubmission(
            text=str(data.get('text') or ''),
            extra=_rest(data, 'text'),
        )
    if task_type == TaskType.FEEDBACK_COLLECTION:
        return FeedbackSubmission(
            rating=data.get('rating'),
            text=str(data.get('text') or ''),
            extra=_rest(data, 'rating', 'text'),
        )
    if task_type == TaskType.IMAGE_TAGGING:
        return TaggingSubmission(
            tags=_as_list(data.get('tags')),
            extra=_rest(data, 'tags'),
        )
    return GenericSubmission(task_type=task_type or '', values=dict(data))


def submission_to_item(submission: Submission) -> Dict[str, Any]:
    """Stored form: the variant tag plus its fields."""
    return {'type': submission.kind, 'fields': submission.fields()}


def _rating_in_scale(rating: Any, scale: Any) -> bool:
    try:
        low, high = float(scale[0]), float(scale[1])
        value = float(rating)
    except (TypeError, ValueError, IndexError, KeyError):
        return False
    return low <= value <= high


def validate_submission(submission: Submission, rules: Optional[Dict[str, Any]]) -> float:
    """
    Score a submission against a task's validation rules, in [0, 1].

    Rules: required_fields, min_length, min_tags, rating_scale.
    """
    rules = rules or {}
    score = 1.0
    values = submission.fields()

    required = _as_list(rules.get('required_fields'))
    if required:
        missing = [name for name in required if _is_missing(values.get(name))]
        score -= len(missing) / len(required) * MISSING_FIELDS_WEIGHT

    min_length = rules.get('min_length')
    text = getattr(submission, 'text', None)
    if min_length and isinstance(text, str) and len(text) < int(min_length):
        score -= SHORT_TEXT_PENALTY

    min_tags = rules.get('min_tags')
    tags = getattr(submission, 'tags', None)
    if min_tags and isinstance(tags, list) and len(tags) < int(min_tags):
        score -= FEW_TAGS_PENALTY

    scale = rules.get('rating_scale')
    rating = getattr(submission, 'rating', None)
    if scale and rating is not None and not _rating_in_scale(rating, scale):
        score -= RATING_OUT_OF_SCALE_PENALTY

    return clamp(score)


# ----------------------------------------------------------------------
# Microtask model
# ----------------------------------------------------------------------

@dataclass
class Microtask:
    id: str
    title: str = ''
    description: str = ''
    instructions: str = ''
    task_type: str = ''
    payout: Decimal = Decimal('0.00')
    estimated_minutes: float = 5.0
    total_slots: int = 0
    completed_slots: int = 0
    required_accuracy: float = 0.8
    auto_approve: bool = True
    active: bool = True
    expires_at: Optional[datetime] = None
    validation_rules: Dict[str, Any] = field(default_factory=dict)
    task_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'Microtask':
        return cls(
            id=str(_pick(item, 'microtaskId', 'id', default='')),
            title=str(_pick(item, 'title', default='')),
            description=str(_pick(item, 'description', default='')),
            instructions=str(_pick(item, 'instructions', default='')),
            task_type=str(_pick(item, 'taskType', 'task_type', default='')),
            payout=to_money(_pick(item, 'payout', default='0')),
            estimated_minutes=float(_pick(item, 'estimatedMinutes', 'estimated_minutes', default=5)),
            total_slots=int(_pick(item, 'totalSlots', 'total_slots', default=0)),
            completed_slots=int(_pick(item, 'completedSlots', 'completed_slots', default=0)),
            required_accuracy=float(_pick(item, 'requiredAccuracy', 'required_accuracy', default=0.8)),
            auto_approve=bool(_pick(item, 'autoApprove', 'auto_approve', default=True)),
            active=bool(_pick(item, 'active', default=True)),
            expires_at=parse_timestamp(_pick(item, 'expiresAt', 'expires_at')),
            validation_rules=dict(_pick(item, 'validationRules', 'validation_rules', default={}) or {}),
            task_data=dict(_pick(item, 'taskData', 'task_data', default={}) or {}),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at is not None and self.expires_at <= now

    def is_available(self, now: Optional[datetime] = None) -> bool:
        return self.active and self.completed_slots < self.total_slots and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'instructions': self.instructions,
            'taskType': self.task_type,
            'payout': self.payout,
            'estimatedMinutes': self.estimated_minutes,
            'totalSlots': self.total_slots,
            'completedSlots': self.completed_slots,
            'requiredAccuracy': self.required_accuracy,
            'expiresAt': self.expires_at.isoformat() if self.expires_at else None,
            'taskData': self.task_data,
        }


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------

class MicrotaskService:
    """Microtask listing, submission, review and payout."""

    def __init__(self, store, payout_router, microtasks_table: str = None, completions_table: str = None):
        self.store = store
        self.payout_router = payout_router
        self.microtasks_table = microtasks_table or config.MICROTASKS_TABLE
        self.completions_table = completions_table or config.MICROTASK_COMPLETIONS_TABLE

    def get_microtask(self, microtask_id: str) -> Optional[Microtask]:
        item = self.store.get_item(self.microtasks_table, {'microtaskId': microtask_id})
        return Microtask.from_item(item) if item else None

    def get_user_completions(self, user_id: str, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        """Most recent first."""
        return self.store.query(
            self.completions_table,
            'userId',
            user_id,
            index_name='byUser',
            limit=limit,
            scan_forward=False
        )

    def get_available_microtasks(
        self,
        user_id: str,
        task_type: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> List[Microtask]:
        """Open tasks the user has not done yet, best paid first."""
        completed_ids = {c.get('microtaskId') for c in self.get_user_completions(user_id, limit=None)}
        filters = {'active': True}
        if task_type:
            filters['taskType'] = task_type

        tasks = [Microtask.from_item(item) for item in self.store.scan(self.microtasks_table, filters=filters)]
        available = [t for t in tasks if t.is_available(now) and t.payout > 0 and t.id not in completed_ids]
        return sorted(available, key=lambda t: t.payout, reverse=True)

    def submit_completion(
        self,
        user_id: str,
        microtask_id: str,
        submission_data: Any,
        time_spent_seconds: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Validate and store a submission; pay it right away when auto-approved.

        Raises:
            NotFoundError: unknown profile or task
            ValidationError: task unavailable or already submitted, no payout set,
                bad payload, or the slot was taken concurrently
        """
        load_profile(self.store, user_id)

        task = self.get_microtask(microtask_id)
        if task is None:
            raise NotFoundError('Microtask not found')
        if task.is_expired():
            raise ValidationError('Microtask has expired')
        if not task.is_available():
            raise ValidationError('Microtask is no longer available')
        if task.payout <= 0:
            raise ValidationError('Microtask has no payout')

        if any(c.get('microtaskId') == microtask_id for c in self.get_user_completions(user_id, limit=None)):
            raise ValidationError('Microtask already submitted')

        submission = parse_submission(task.task_type, submission_data)
        score = validate_submission(submission, task.validation_rules)
        approved = task.auto_approve and score >= task.required_accuracy

        # Optimistic slot claim against the count we validated
        try:
            self.store.update_item(
                self.microtasks_table,
                {'microtaskId': microtask_id},
                increments={'completedSlots': 1},
                condition={'completedSlots': task.completed_slots},
                # Tasks created without a counter have none until the first claim
                missing_ok=['completedSlots'] if task.completed_slots == 0 else None
            )
        except ConflictError:
            raise ValidationError('Microtask is no longer available')

        completion = {
            'completionId': str(uuid.uuid4()),
            'microtaskId': microtask_id,
            'userId': user_id,
            'status': MicrotaskStatus.APPROVED if approved else MicrotaskStatus.PENDING_REVIEW,
            'submission': submission_to_item(submission),
            'validationScore': Decimal(str(round(score, 4))),
            'payoutAmount': task.payout,
            'payoutStatus': MicrotaskPayoutStatus.PENDING,
            'timeSpentSeconds': int(time_spent_seconds) if time_spent_seconds is not None else None,
            'submittedAt': _now(),
        }
        self.store.put_item(self.completions_table, completion, unique_attribute='completionId')
        logger.info(
            f"Microtask {microtask_id} submitted by {user_id}: score {score:.2f}, {completion['status']}"
        )

        if approved:
            result = self.process_microtask_payout(user_id, completion['completionId'])
            completion['payoutStatus'] = (
                MicrotaskPayoutStatus.COMPLETED if result and result.success else MicrotaskPayoutStatus.FAILED
            )
        return completion

    def review_completion(
        self,
        completion_id: str,
        reviewer_id: str,
        approve: bool,
        notes: str = ''
    ) -> Dict[str, Any]:
        """
        Manual review of a completion awaiting it. Approval triggers the payout.

        Raises:
            NotFoundError: unknown completion
            ValidationError: completion is not awaiting review
        """
        completion = self.store.get_item(self.completions_table, {'completionId': completion_id})
        if not completion:
            raise NotFoundError('Completion not found')

        current = completion.get('status')
        if current not in (MicrotaskStatus.PENDING_REVIEW, MicrotaskStatus.SUBMITTED):
            raise ValidationError(f'Completion already {current}')

        new_status = MicrotaskStatus.APPROVED if approve else MicrotaskStatus.REJECTED
        updates = {
            'status': new_status,
            'reviewedBy': reviewer_id,
            'reviewedAt': _now(),
            'reviewNotes': notes or '',
        }
        try:
            self.store.update_item(
                self.completions_table,
                {'completionId': completion_id},
                updates=updates,
                condition={'status': current}
            )
        except ConflictError:
            raise ValidationError('Completion was reviewed concurrently')

        completion.update(updates)
        logger.info(f"Completion {completion_id} {new_status} by {reviewer_id}")

        if approve:
            result = self.process_microtask_payout(completion['userId'], completion_id)
            completion['payoutStatus'] = (
                MicrotaskPayoutStatus.COMPLETED if result and result.success else MicrotaskPayoutStatus.FAILED
            )
        return completion

    def process_microtask_payout(self, user_id: str, completion_id: str):
        """
        Pay an approved completion through the payout router.
        Returns the PayoutResult, or None when the completion is not payable.
        """
        completion = self.store.get_item(self.completions_table, {'completionId': completion_id})
        if not completion or completion.get('userId') != user_id:
            logger.warning(f"Completion {completion_id} not found for user {user_id}")
            return None
        if completion.get('status') != MicrotaskStatus.APPROVED:
            return None

        key = {'completionId': completion_id}
        try:
            self.store.update_item(
                self.completions_table,
                key,
                updates={'payoutStatus': MicrotaskPayoutStatus.PROCESSING},
                condition={'payoutStatus': MicrotaskPayoutStatus.PENDING}
            )
        except ConflictError:
            logger.info(f"Completion {completion_id} payout already handled")
            return None

        amount = completion.get('payoutAmount', 0)
        result = None
        try:
            result = self.payout_router.process_payout(
                user_id,
                amount,
                TransactionType.MICROTASK_COMPLETION,
                completion.get('microtaskId')
            )
        except QualifyFirstError as e:
            logger.error(f"Microtask payout for {completion_id} failed: {e}")
            result = PayoutResult(False, PayoutStatus.FAILED, to_money(amount), error=e.message)
        finally:
            # Never leave the claim in processing
            self._finish_payout(key, result)
        return result

    def _finish_payout(self, key: Dict[str, Any], result: Optional[PayoutResult]) -> None:
        updates = {
            'payoutStatus': (
                MicrotaskPayoutStatus.COMPLETED if result and result.success else MicrotaskPayoutStatus.FAILED
            ),
            'payoutTransactionId': result.transaction_id if result else None,
            'payoutHeld': bool(result and result.held),
        }
        self.store.update_item(
            self.completions_table,
            key,
            updates=updates,
            condition={'payoutStatus': MicrotaskPayoutStatus.PROCESSING}
        )

    def get_user_microtask_earnings(self, user_id: str) -> Dict[str, Any]:
        summary = {
            'totalEarned': Decimal('0.00'),
            'totalCompleted': 0,
            'pendingReview': 0,
            'pendingPayout': Decimal('0.00'),
        }
        for completion in self.get_user_completions(user_id, limit=None):
            status = completion.get('status')
            amount = to_money(completion.get('payoutAmount', 0))
            if status == MicrotaskStatus.APPROVED:
                summary['totalCompleted'] += 1
                if completion.get('payoutStatus') == MicrotaskPayoutStatus.COMPLETED:
                    summary['totalEarned'] += amount
                elif completion.get('payoutStatus') == MicrotaskPayoutStatus.PENDING:
                    summary['pendingPayout'] += amount
                elif completion.get('payoutHeld'):
                    # Failed disbursement, amount kept in the pending ledger
                    summary['pendingPayout'] += amount
            elif status in (MicrotaskStatus.PENDING_REVIEW, MicrotaskStatus.SUBMITTED):
                summary['pendingReview'] += 1
        return summary
