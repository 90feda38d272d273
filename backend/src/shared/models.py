"""
Data models and status constants for the survey matching platform.
Based on the offer lifecycle: Listed → Matched → Clicked → Postback (Completed/Disqualified/Abandoned) → Paid
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from shared.errors import ValidationError

CENT = Decimal('0.01')


class CompletionResult:
    """Outcome reported for a survey attempt."""
    COMPLETED = 'completed'
    DISQUALIFIED = 'disqualified'
    ABANDONED = 'abandoned'

    ALL = (COMPLETED, DISQUALIFIED, ABANDONED)


class PostbackStatus:
    """CPX-style provider status codes."""
    COMPLETED = '1'
    DISQUALIFIED = '2'


class PendingStatus:
    """Pending earning row statuses."""
    PENDING = 'pending'
    PROCESSING = 'processing'  # Claimed by an in-flight payout
    PROCESSED = 'processed'


class TransactionStatus:
    """Payout transaction statuses."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


class TransactionType:
    """Earning source / payout transaction types."""
    SURVEY_COMPLETION = 'survey_completion'
    REFERRAL_BONUS = 'referral_bonus'
    MANUAL_PAYOUT = 'manual_payout'
    MICROTASK_COMPLETION = 'microtask_completion'

    ALL = (SURVEY_COMPLETION, REFERRAL_BONUS, MANUAL_PAYOUT, MICROTASK_COMPLETION)


class PayoutMethod:
    """Disbursement rails."""
    BALANCE_SERVICE = 'balance_service'
    WALLET = 'wallet'
    SPLIT = 'split'


class PayoutPreference:
    """User payout preferences. 'justthetip' and 'both' are legacy profile values."""
    BALANCE_SERVICE = 'balance_service'
    JUSTTHETIP = 'justthetip'
    WALLET = 'wallet'
    SPLIT = 'split'
    BOTH = 'both'

    @staticmethod
    def normalize(value: Optional[str]) -> str:
        value = (value or '').strip().lower()
        if value in (PayoutPreference.JUSTTHETIP, PayoutPreference.BALANCE_SERVICE, ''):
            return PayoutPreference.BALANCE_SERVICE
        if value == PayoutPreference.BOTH:
            return PayoutPreference.SPLIT
        return value


class MicrotaskStatus:
    """Microtask completion review statuses."""
    SUBMITTED = 'submitted'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    PENDING_REVIEW = 'pending_review'


class MicrotaskPayoutStatus:
    """Microtask completion payout statuses."""
    PENDING = 'pending'
    PROCESSING = 'processing'  # Claimed by an in-flight payout
    COMPLETED = 'completed'
    FAILED = 'failed'


class TaskType:
    """Supported microtask types."""
    DATA_VERIFICATION = 'data_verification'
    CONTENT_MODERATION = 'content_moderation'
    IMAGE_TAGGING = 'image_tagging'
    TEXT_TRANSCRIPTION = 'text_transcription'
    LINK_VALIDATION = 'link_validation'
    SOCIAL_MEDIA_ENGAGEMENT = 'social_media_engagement'
    FEEDBACK_COLLECTION = 'feedback_collection'
    QUALITY_ASSURANCE = 'quality_assurance'


# Age bracket midpoints used for targeting comparisons
AGE_BRACKETS = {
    '18-24': 21,
    '25-34': 30,
    '35-44': 40,
    '45-54': 50,
    '55-64': 60,
    '65+': 70,
}
DEFAULT_AGE = 25


def to_money(value: Any) -> Decimal:
    """
    Convert a user- or provider-supplied amount to a Decimal with 2 places.

    Raises:
        ValidationError: if the value is not a finite number
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f'Invalid amount: {value!r}')
    if not amount.is_finite():
        raise ValidationError(f'Invalid amount: {value!r}')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def age_midpoint(age: Any) -> float:
    """
    Resolve an age bracket (or a plain number) to a single comparable age.

    '25-34' -> 30, '65+' -> 70, '42' -> 42, unknown -> 25.
    """
    if isinstance(age, (int, float, Decimal)) and not isinstance(age, bool):
        return float(age)
    text = str(age or '').strip()
    if text in AGE_BRACKETS:
        return float(AGE_BRACKETS[text])
    numbers = [float(n) for n in re.findall(r'\d+(?:\.\d+)?', text)]
    if len(numbers) >= 2:
        return (numbers[0] + numbers[1]) / 2
    if numbers:
        return numbers[0]
    return float(DEFAULT_AGE)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an epoch-seconds or ISO-8601 timestamp into an aware datetime."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float, Decimal)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text), tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid timestamp: {value!r}')
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _pick(item: Dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first present key; items may be camelCase (DynamoDB) or snake_case (API)."""
    for name in names:
        if name in item and item[name] is not None:
            return item[name]
    return default


def _as_list(value: Any) -> List[str]:
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v not in (None, '')]
    return [str(value)]


def _optional_number(value: Any) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class UserProfile:
    """Demographic profile plus payout settings. Read-only to matching."""
    user_id: str
    age: str = ''
    gender: str = ''
    location: str = ''
    device: str = ''
    employment: str = ''
    income: str = ''
    interests: List[str] = field(default_factory=list)
    completion_rate: float = 0.0
    total_attempts: int = 0
    avg_survey_time: float = 0.0
    discord_id: Optional[str] = None
    wallet_address: Optional[str] = None
    payout_preference: str = PayoutPreference.BALANCE_SERVICE
    minimum_payout: Decimal = Decimal('5.00')

    @property
    def age_value(self) -> float:
        return age_midpoint(self.age)

    @classmethod
    def from_item(cls, item: Dict[str, Any], default_minimum: Decimal = Decimal('5.00')) -> 'UserProfile':
        minimum = _pick(item, 'minimumPayout', 'minimum_payout')
        return cls(
            user_id=str(_pick(item, 'userId', 'user_id', default='')),
            age=str(_pick(item, 'age', default='')),
            gender=str(_pick(item, 'gender', default='')),
            location=str(_pick(item, 'location', 'country', default='')),
            device=str(_pick(item, 'device', default='')),
            employment=str(_pick(item, 'employment', default='')),
            income=str(_pick(item, 'income', 'income_range', default='')),
            interests=_as_list(_pick(item, 'interests', 'hobbies')),
            completion_rate=float(_pick(item, 'completionRate', 'completion_rate', default=0) or 0),
            total_attempts=int(_pick(item, 'totalAttempts', 'total_attempts', default=0) or 0),
            avg_survey_time=float(_pick(item, 'avgSurveyTime', 'avg_survey_time', default=0) or 0),
            discord_id=_pick(item, 'discordId', 'discord_id') or None,
            wallet_address=_pick(item, 'walletAddress', 'wallet_address') or None,
            payout_preference=PayoutPreference.normalize(_pick(item, 'payoutPreference', 'payout_preference')),
            minimum_payout=to_money(minimum) if minimum is not None else default_minimum,
        )

    def attributes(self) -> Dict[str, Any]:
        """Snapshot stored alongside completion feedback."""
        return {
            'age': self.age,
            'gender': self.gender,
            'country': self.location,
            'interests': list(self.interests),
            'employment': self.employment,
        }


@dataclass
class SurveyOffer:
    """A third-party survey or internal microtask offer with its targeting."""
    id: str
    provider: str = ''
    title: str = ''
    reward: Decimal = Decimal('0.00')
    estimated_time: float = 10.0
    completion_rate: float = 0.5
    countries: List[str] = field(default_factory=list)
    min_age: Optional[float] = None
    max_age: Optional[float] = None
    genders: List[str] = field(default_factory=list)
    devices: List[str] = field(default_factory=list)
    interests: List[str] = field(default_factory=list)
    total_slots: Optional[int] = None
    completed_slots: int = 0
    active: bool = True
    expires_at: Optional[datetime] = None
    click_url: str = ''
    provider_data: Dict[str, Any] = field(default_factory=dict)

    def is_available(self, now: Optional[datetime] = None) -> bool:
        """Active, has free slots, and not expired."""
        now = now or datetime.now(timezone.utc)
        if not self.active:
            return False
        if self.total_slots is not None and self.completed_slots >= self.total_slots:
            return False
        if self.expires_at is not None and self.expires_at <= now:
            return False
        return True

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'SurveyOffer':
        total_slots = _pick(item, 'totalSlots', 'total_slots')
        return cls(
            id=str(_pick(item, 'offerId', 'id', 'survey_id', default='')),
            provider=str(_pick(item, 'provider', default='')),
            title=str(_pick(item, 'title', default='')),
            reward=to_money(_pick(item, 'reward', 'payout', default='0')),
            estimated_time=float(_pick(item, 'estimatedTime', 'estimated_time', default=10) or 10),
            completion_rate=float(_pick(item, 'completionRate', 'completion_rate', default=0.5)),
            countries=_as_list(_pick(item, 'countries', 'country', 'required_countries')),
            min_age=_optional_number(_pick(item, 'minAge', 'min_age')),
            max_age=_optional_number(_pick(item, 'maxAge', 'max_age')),
            genders=_as_list(_pick(item, 'genders', 'gender', 'required_gender')),
            devices=_as_list(_pick(item, 'devices', 'device')),
            interests=_as_list(_pick(item, 'interests', 'required_hobbies')),
            total_slots=int(total_slots) if total_slots is not None else None,
            completed_slots=int(_pick(item, 'completedSlots', 'completed_slots', default=0)),
            active=bool(_pick(item, 'active', default=True)),
            expires_at=parse_timestamp(_pick(item, 'expiresAt', 'expires_at')),
            click_url=str(_pick(item, 'clickUrl', 'click_url', default='')),
            provider_data=dict(_pick(item, 'providerData', 'provider_data', default={}) or {}),
        )

    def attributes(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'provider': self.provider,
            'reward': self.reward,
            'estimated_time': self.estimated_time,
            'completion_rate': self.completion_rate,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'provider': self.provider,
            'title': self.title,
            'reward': self.reward,
            'estimatedTime': self.estimated_time,
            'completionRate': self.completion_rate,
            'clickUrl': self.click_url,
        }


def clamp(value: Any, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a possibly untrusted numeric value into [low, high]; non-numbers become low."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    if number != number:  # NaN
        return low
    return max(low, min(high, number))


@dataclass
class MatchFactors:
    demographic_match: float
    interest_match: float
    completion_history: float
    provider_performance: float

    def clamped(self) -> 'MatchFactors':
        return MatchFactors(
            demographic_match=clamp(self.demographic_match),
            interest_match=clamp(self.interest_match),
            completion_history=clamp(self.completion_history),
            provider_performance=clamp(self.provider_performance),
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            'demographic_match': self.demographic_match,
            'interest_match': self.interest_match,
            'completion_history': self.completion_history,
            'provider_performance': self.provider_performance,
        }


@dataclass
class MatchScore:
    """Ephemeral ranking value for a (user, offer) pair."""
    offer_id: str
    score: float
    confidence: float
    factors: MatchFactors
    source: str = 'heuristic'

    def clamped(self) -> 'MatchScore':
        return MatchScore(
            offer_id=self.offer_id,
            score=clamp(self.score),
            confidence=clamp(self.confidence),
            factors=self.factors.clamped(),
            source=self.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'offer_id': self.offer_id,
            'score': self.score,
            'confidence': self.confidence,
            'factors': self.factors.to_dict(),
            'source': self.source,
        }
