"""
Review a microtask completion awaiting manual review.
POST /admin/microtasks/completions/{completionId}/review
Body: { "decision": "approve" | "reject", "notes": "..." }
"""
from shared.auth import get_user_sub, is_reviewer
from shared.errors import QualifyFirstError, ValidationError
from shared.logging import log_event
from shared.services import get_services
from shared.utils import error_response, format_response, get_path_param, internal_error, parse_body

DECISIONS = {'approve': True, 'reject': False}


def handler(event, context):
    log_event(event)
    reviewer_id = get_user_sub(event)
    if not reviewer_id:
        return format_response(401, {'error': 'Unauthorized'})
    if not is_reviewer(event):
        return format_response(403, {'error': 'Reviewer access required'})

    try:
        completion_id = get_path_param(event, 'completionId')
        body = parse_body(event)
        decision = str(body.get('decision', '')).lower()

        if not completion_id:
            raise ValidationError('Missing completionId')
        if decision not in DECISIONS:
            raise ValidationError('decision must be approve or reject')

        completion = get_services().microtasks.review_completion(
            completion_id,
            reviewer_id,
            DECISIONS[decision],
            body.get('notes', '')
        )
        return format_response(200, {'success': True, 'completion': completion})

    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Error reviewing completion', e)
