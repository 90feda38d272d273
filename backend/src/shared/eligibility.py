"""
Eligibility filter - hard targeting constraints.
Removes offers a user cannot complete before any scoring happens.
"""
from datetime import datetime
from typing import Iterable, List, Optional
from shared.models import SurveyOffer, UserProfile


def _normalize(value: str) -> str:
    return str(value or '').strip().lower()


def matches_country(profile: UserProfile, offer: SurveyOffer) -> bool:
    """Location is free text, so an allowed country only needs to appear in it."""
    if not offer.countries:
        return True
    location = _normalize(profile.location)
    return any(_normalize(country) and _normalize(country) in location for country in offer.countries)


def matches_age(profile: UserProfile, offer: SurveyOffer) -> bool:
    age = profile.age_value
    if offer.min_age is not None and age < offer.min_age:
        return False
    if offer.max_age is not None and age > offer.max_age:
        return False
    return True


def matches_gender(profile: UserProfile, offer: SurveyOffer) -> bool:
    if not offer.genders:
        return True
    return _normalize(profile.gender) in {_normalize(g) for g in offer.genders}


def matches_device(profile: UserProfile, offer: SurveyOffer) -> bool:
    if not offer.devices:
        return True
    return _normalize(profile.device) in {_normalize(d) for d in offer.devices}


HARD_CONSTRAINTS = (matches_country, matches_age, matches_gender, matches_device)


def is_eligible(profile: UserProfile, offer: SurveyOffer, now: Optional[datetime] = None) -> bool:
    """True if the offer is available and passes every hard constraint."""
    if not offer.is_available(now):
        return False
    return all(check(profile, offer) for check in HARD_CONSTRAINTS)


def filter_eligible(
    profile: UserProfile,
    offers: Iterable[SurveyOffer],
    now: Optional[datetime] = None
) -> List[SurveyOffer]:
    """Keep eligible offers, preserving input order."""
    return [offer for offer in offers if is_eligible(profile, offer, now)]
