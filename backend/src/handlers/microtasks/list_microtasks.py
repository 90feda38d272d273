"""
Available microtasks for the authenticated user.
GET /microtasks?type=image_tagging
"""
from shared.auth import get_user_sub
from shared.errors import QualifyFirstError
from shared.logging import log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_query_param, internal_error


def handler(event, context):
    log_event(event)
    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        tasks = get_services().microtasks.get_available_microtasks(
            user_id,
            task_type=get_query_param(event, 'type')
        )
        return format_response(200, {
            'success': True,
            'microtasks': [task.to_dict() for task in tasks]
        })
    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Error fetching microtasks', e)
