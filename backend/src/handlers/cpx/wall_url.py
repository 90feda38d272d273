"""
CPX Research offer wall URL for the authenticated user.
GET /cpx/wall-url?subid1=...&subid2=...&message_id=...
"""
from shared.auth import get_user_email, get_user_sub
from shared.errors import NotFoundError, QualifyFirstError
from shared.logging import log_event
from shared.profiles import load_profile_item
from shared.services import get_services
from shared.signatures import generate_wall_url
from shared.utils import error_response, format_response, get_query_param, internal_error


def handler(event, context):
    log_event(event)
    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        try:
            profile = load_profile_item(get_services().store, user_id)
        except NotFoundError:
            profile = {}

        url = generate_wall_url(
            user_id,
            username=profile.get('username') or profile.get('name') or '',
            email=profile.get('email') or get_user_email(event) or '',
            subid1=get_query_param(event, 'subid1', ''),
            subid2=get_query_param(event, 'subid2', ''),
            message_id=get_query_param(event, 'message_id'),
        )
        return format_response(200, {'url': url})
    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Error generating wall URL', e)
