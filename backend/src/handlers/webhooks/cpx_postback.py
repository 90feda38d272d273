"""
CPX Research postback handler.
GET|POST /webhooks/cpx?status=1&trans_id=...&user_id=...&amount_usd=...&hash=...

Answers plain text: "1" to acknowledge, "0" when rejected.
"""
from shared.logging import log_event, logger
from shared.postbacks import ACK, PostbackResponse
from shared.services import get_services
from shared.utils import get_query_params, text_response


def handler(event, context):
    log_event(event)
    try:
        params = get_query_params(event)
        response = get_services().postbacks.process(params)
    except Exception as e:
        # Wiring failures are acknowledged too
        logger.exception(f"CPX postback error: {e}")
        response = PostbackResponse(200, ACK)
    return text_response(response.status_code, response.body)
