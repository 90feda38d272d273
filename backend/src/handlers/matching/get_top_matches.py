"""
Top survey matches for the authenticated user.
GET  /matches?limit=3
POST /matches  Body: { "limit": 3, "offers": [ ...optional candidate offers... ] }

Without candidate offers in the body, the active offers table is ranked.
"""
from shared.auth import get_user_sub
from shared.config import config
from shared.errors import QualifyFirstError, ValidationError
from shared.logging import log_event, logger
from shared.models import SurveyOffer
from shared.profiles import load_active_offers, load_profile
from shared.ranking import serialize_matches
from shared.services import get_services
from shared.utils import error_response, format_response, get_query_param, internal_error, parse_body

MAX_LIMIT = 50


def _parse_limit(value) -> int:
    if value in (None, ''):
        return config.DEFAULT_MATCH_LIMIT
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError('limit must be an integer')
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f'limit must be between 1 and {MAX_LIMIT}')
    return limit


def handler(event, context):
    log_event(event)
    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        body = parse_body(event)
        limit = _parse_limit(body.get('limit', get_query_param(event, 'limit')))

        services = get_services()
        profile = load_profile(services.store, user_id)

        candidates = body.get('offers')
        if candidates is not None:
            if not isinstance(candidates, list):
                raise ValidationError('offers must be a list')
            offers = [SurveyOffer.from_item(o) for o in candidates if isinstance(o, dict)]
        else:
            offers = load_active_offers(services.store)

        result = services.ranker.get_top_matches(profile, offers, limit=limit)
        logger.info(f"Returning {len(result['matches'])} matches for {user_id}")
        return format_response(200, serialize_matches(result))

    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Error ranking matches', e)
