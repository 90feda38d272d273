"""
Match scorer.

Scores a (user, offer) pair in [0, 1]. The AI text-completion service is
tried first; any failure maps to the deterministic heuristic through
ScoringResult.unwrap_or_else, so the fallback is part of the return type.

Heuristic weights:
- demographic_match     30%
- interest_match        25%
- completion_history    25%
- provider_performance  20%
"""
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from shared.errors import ConfigError, UpstreamError, QualifyFirstError
from shared.logging import logger
from shared.models import MatchFactors, MatchScore, SurveyOffer, UserProfile, clamp

WEIGHTS = {
    'demographic_match': 0.30,
    'interest_match': 0.25,
    'completion_history': 0.25,
    'provider_performance': 0.20,
}

HEURISTIC_CONFIDENCE = 0.7
DEFAULT_AI_CONFIDENCE = 0.5
DEFAULT_AI_FACTOR = 0.5
NEUTRAL_INTEREST_MATCH = 0.7
GENDER_MISMATCH_PENALTY = 0.3
AGE_DISTANCE_SCALE = 20.0
DEFAULT_TARGET_MIN_AGE = 18
DEFAULT_TARGET_MAX_AGE = 65

SYSTEM_PROMPT = (
    'You are an expert survey matching algorithm. Analyze user profiles and survey '
    'requirements to predict completion probability. Return a JSON score between 0-1 '
    'with detailed factors.'
)


class ScoringError(QualifyFirstError):
    """The AI score could not be obtained or parsed."""


@dataclass(frozen=True)
class ScoringResult:
    """Either a MatchScore or the error that prevented one."""
    score: Optional[MatchScore] = None
    error: Optional[Exception] = None

    @classmethod
    def ok(cls, score: MatchScore) -> 'ScoringResult':
        return cls(score=score)

    @classmethod
    def failure(cls, error: Exception) -> 'ScoringResult':
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.score is not None

    def unwrap_or_else(self, fallback: Callable[[Exception], MatchScore]) -> MatchScore:
        if self.is_ok:
            return self.score
        return fallback(self.error)


def _fmt_list(values) -> str:
    return ', '.join(values) if values else 'any'


def build_matching_prompt(profile: UserProfile, offer: SurveyOffer, historical: Dict[str, Any]) -> str:
    """Structured prompt embedding profile, offer and history aggregates."""
    return f"""
Analyze this user-survey match:

USER PROFILE:
- Age: {profile.age}
- Gender: {profile.gender}
- Country: {profile.location}
- Device: {profile.device}
- Interests: {', '.join(profile.interests)}
- Employment: {profile.employment}
- Income: {profile.income}
- Completion Rate: {profile.completion_rate}%
- Avg Survey Time: {profile.avg_survey_time} min

SURVEY DETAILS:
- Title: {offer.title}
- Provider: {offer.provider}
- Reward: ${offer.reward}
- Est. Time: {offer.estimated_time} min
- Completion Rate: {round(offer.completion_rate * 100, 1)}%
- Target Age: {offer.min_age or 'any'} - {offer.max_age or 'any'}
- Target Gender: {_fmt_list(offer.genders)}
- Interests: {_fmt_list(offer.interests)}

HISTORICAL DATA:
- Similar surveys completed by user: {historical.get('similarCompleted', 0)}
- Provider success rate for this user: {historical.get('providerSuccessRate', 0)}%
- Average reward/time ratio preference: {historical.get('rewardTimeRatio', 'unknown')}

Return JSON with:
{{
  "score": 0.85,
  "confidence": 0.92,
  "factors": {{
    "demographic_match": 0.90,
    "interest_match": 0.75,
    "completion_history": 0.88,
    "provider_performance": 0.85
  }},
  "reasoning": "Strong demographic alignment, high user completion rate, good reward-to-time ratio match"
}}
""".strip()


def _first_json_object(content: str) -> Optional[dict]:
    """Decode the first JSON object that appears anywhere in the text."""
    decoder = json.JSONDecoder()
    start = content.find('{')
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(content, start)
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass
        start = content.find('{', start + 1)
    return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if number != number else number


def parse_ai_response(content: str, offer_id: str) -> MatchScore:
    """
    Turn the model's reply into a clamped MatchScore.

    Raises:
        ScoringError: no JSON object, or no numeric score in it
    """
    parsed = _first_json_object(content or '')
    if parsed is None:
        raise ScoringError('No JSON object in AI response')

    score = _number(parsed.get('score'))
    if score is None:
        raise ScoringError('AI response has no numeric score')

    confidence = _number(parsed.get('confidence'))
    if confidence is None or not 0.0 <= confidence <= 1.0:
        confidence = DEFAULT_AI_CONFIDENCE

    factors = parsed.get('factors')
    if not isinstance(factors, dict):
        factors = {}

    def factor(name: str) -> float:
        value = _number(factors.get(name))
        return DEFAULT_AI_FACTOR if value is None else value

    return MatchScore(
        offer_id=offer_id,
        score=score,
        confidence=confidence,
        factors=MatchFactors(
            demographic_match=factor('demographic_match'),
            interest_match=factor('interest_match'),
            completion_history=factor('completion_history'),
            provider_performance=factor('provider_performance'),
        ),
        source='ai',
    ).clamped()


def demographic_match(profile: UserProfile, offer: SurveyOffer) -> float:
    score = 1.0

    # Age alignment
    if offer.min_age is not None or offer.max_age is not None:
        min_age = offer.min_age if offer.min_age is not None else DEFAULT_TARGET_MIN_AGE
        max_age = offer.max_age if offer.max_age is not None else DEFAULT_TARGET_MAX_AGE
        target_age = (min_age + max_age) / 2
        age_diff = abs(profile.age_value - target_age)
        score *= max(0.0, 1 - age_diff / AGE_DISTANCE_SCALE)

    # Gender match
    if offer.genders:
        allowed = {g.strip().lower() for g in offer.genders}
        score *= 1.0 if profile.gender.strip().lower() in allowed else GENDER_MISMATCH_PENALTY

    return score


def interest_match(profile: UserProfile, offer: SurveyOffer) -> float:
    """Fraction of offer interests that substring-match a user interest, either direction."""
    if not offer.interests:
        return NEUTRAL_INTEREST_MATCH

    user_interests = [i.lower() for i in profile.interests if i]
    offer_interests = [i.lower() for i in offer.interests]
    match_count = sum(
        1 for interest in offer_interests
        if any(user in interest or interest in user for user in user_interests)
    )
    return min(match_count / len(offer_interests), 1.0)


def heuristic_score(profile: UserProfile, offer: SurveyOffer) -> MatchScore:
    factors = MatchFactors(
        demographic_match=demographic_match(profile, offer),
        interest_match=interest_match(profile, offer),
        completion_history=min(profile.completion_rate / 100, 1.0),
        provider_performance=offer.completion_rate,
    ).clamped()

    score = sum(getattr(factors, name) * weight for name, weight in WEIGHTS.items())

    return MatchScore(
        offer_id=offer.id,
        score=clamp(score),
        confidence=HEURISTIC_CONFIDENCE,
        factors=factors,
        source='heuristic',
    )


def basic_score(offer: SurveyOffer) -> MatchScore:
    """Last-resort score when even the heuristic path blew up."""
    value = offer.completion_rate * (float(offer.reward) / max(offer.estimated_time, 1))
    return MatchScore(
        offer_id=offer.id,
        score=clamp(value),
        confidence=0.5,
        factors=MatchFactors(0.5, 0.5, 0.5, clamp(offer.completion_rate)),
        source='basic',
    )


class MatchScorer:
    """AI-first scorer with a deterministic heuristic fallback."""

    def __init__(self, completion_client):
        self.completion_client = completion_client

    def try_ai_score(
        self,
        profile: UserProfile,
        offer: SurveyOffer,
        historical: Dict[str, Any]
    ) -> ScoringResult:
        if not self.completion_client.enabled:
            return ScoringResult.failure(ConfigError('AI scoring disabled'))
        try:
            content = self.completion_client.complete(
                build_matching_prompt(profile, offer, historical),
                system_prompt=SYSTEM_PROMPT,
            )
            return ScoringResult.ok(parse_ai_response(content, offer.id))
        except (UpstreamError, ConfigError, ScoringError) as e:
            return ScoringResult.failure(e)

    def score(
        self,
        profile: UserProfile,
        offer: SurveyOffer,
        historical: Optional[Dict[str, Any]] = None
    ) -> MatchScore:
        def fallback(error: Exception) -> MatchScore:
            logger.debug(f"Heuristic scoring for offer {offer.id}: {error}")
            return heuristic_score(profile, offer)

        return self.try_ai_score(profile, offer, historical or {}).unwrap_or_else(fallback).clamped()
