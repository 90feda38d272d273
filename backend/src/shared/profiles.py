"""
Profile and offer lookups. Profiles are owned by the web profile subsystem;
this backend only reads them.
"""
from datetime import datetime
from typing import List, Optional
from shared.config import config
from shared.errors import NotFoundError
from shared.models import SurveyOffer, UserProfile


def load_profile(store, user_id: str, table_name: str = None) -> UserProfile:
    """
    Raises:
        NotFoundError: no profile for this user
    """
    item = store.get_item(table_name or config.PROFILES_TABLE, {'userId': user_id})
    if not item:
        raise NotFoundError(f'Profile not found for user {user_id}')
    return UserProfile.from_item(item, default_minimum=config.DEFAULT_MINIMUM_PAYOUT)


def load_profile_item(store, user_id: str, table_name: str = None) -> dict:
    """Raw profile item, for fields outside UserProfile (username, email, sub ids)."""
    item = store.get_item(table_name or config.PROFILES_TABLE, {'userId': user_id})
    if not item:
        raise NotFoundError(f'Profile not found for user {user_id}')
    return item


def load_offer(store, offer_id: str, table_name: str = None) -> Optional[SurveyOffer]:
    item = store.get_item(table_name or config.OFFERS_TABLE, {'offerId': offer_id})
    return SurveyOffer.from_item(item) if item else None


def load_active_offers(store, table_name: str = None, now: Optional[datetime] = None) -> List[SurveyOffer]:
    """Active, unexpired offers with free slots."""
    items = store.scan(table_name or config.OFFERS_TABLE, filters={'active': True})
    offers = [SurveyOffer.from_item(item) for item in items]
    return [offer for offer in offers if offer.is_available(now)]
