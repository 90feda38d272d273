"""
Survey completion webhook.
POST /webhooks/survey-completion
    Authorization: Bearer <WEBHOOK_SECRET_TOKEN>
    Body: { "user_id", "survey_id", "provider", "status", "payout", "time_spent", "provider_data" }
GET  /webhooks/survey-completion[?challenge=...]  (provider endpoint verification)
"""
from shared.errors import QualifyFirstError
from shared.logging import log_event
from shared.services import get_services
from shared.signatures import verify_bearer_token
from shared.utils import (
    error_response,
    format_response,
    get_header,
    get_http_method,
    get_query_param,
    internal_error,
    parse_body,
)


def handler(event, context):
    log_event(event)

    if get_http_method(event) == 'GET':
        challenge = get_query_param(event, 'challenge')
        if challenge:
            return format_response(200, {'challenge': challenge})
        return format_response(200, {'status': 'active', 'service': 'QualifyFirst Survey Webhooks'})

    if not verify_bearer_token(get_header(event, 'Authorization')):
        return format_response(401, {'error': 'Unauthorized'})

    try:
        result = get_services().postbacks.process_survey_completion(parse_body(event))
        return format_response(200, result)
    except QualifyFirstError as e:
        return error_response(e)
    except Exception as e:
        return internal_error('Webhook processing error', e)
