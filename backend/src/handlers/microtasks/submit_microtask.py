"""
Submit a microtask completion.
POST /microtasks/submit
Body: { "microtask_id": "...", "submission_data": {...}, "time_spent_seconds": 120 }
"""
from shared.auth import get_user_sub
from shared.errors import QualifyFirstError, ValidationError
from shared.logging import log_event
from shared.services import get_services
from shared.utils import error_response, format_response, internal_error, parse_body


def handler(event, context):
    log_event(event)
    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Unauthorized'})

    try:
        body = parse_body(event)
        microtask_id = body.get('microtask_id')
        submission_data = body.get('submission_data')
        if not microtask_id or not submission_data:
            raise ValidationError('Missing required fields: microtask_id and submission_data')

        time_spent = body.get('time_spent_seconds')
        if time_spent is not None:
            try:
                time_spent = int(time_spent)
            except (TypeError, ValueError):
                raise ValidationError('time_spent_seconds must be an integer')

        completion = get_services().microtasks.submit_completion(
            user_id,
            str(microtask_id),
            submission_data,
            time_spent
        )
        return format_response(200, {'success': True, 'completion': completion})

    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Microtask submit error', e)
