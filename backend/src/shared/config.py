"""
Configuration module for Lambda handlers.
Loads all environment variables needed by the platform.
"""
import os
from decimal import Decimal


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    PROFILES_TABLE = os.environ.get('PROFILES_TABLE', '')
    OFFERS_TABLE = os.environ.get('OFFERS_TABLE', '')
    FEEDBACK_TABLE = os.environ.get('FEEDBACK_TABLE', '')
    PENDING_EARNINGS_TABLE = os.environ.get('PENDING_EARNINGS_TABLE', '')
    PAYOUT_TRANSACTIONS_TABLE = os.environ.get('PAYOUT_TRANSACTIONS_TABLE', '')
    USER_EARNINGS_TABLE = os.environ.get('USER_EARNINGS_TABLE', '')
    POSTBACKS_TABLE = os.environ.get('POSTBACKS_TABLE', '')
    COMPLETION_STATS_TABLE = os.environ.get('COMPLETION_STATS_TABLE', '')
    MICROTASKS_TABLE = os.environ.get('MICROTASKS_TABLE', '')
    MICROTASK_COMPLETIONS_TABLE = os.environ.get('MICROTASK_COMPLETIONS_TABLE', '')

    # Survey providers
    CPX_APP_ID = os.environ.get('CPX_APP_ID', '')
    CPX_API_KEY = os.environ.get('CPX_API_KEY', '')
    BITLABS_API_KEY = os.environ.get('BITLABS_API_KEY', '')
    CPX_WALL_BASE_URL = os.environ.get('CPX_WALL_BASE_URL', 'https://wall.cpx-research.com/index.php')

    # Postback signing. No default: must be supplied by the deployment.
    CPX_SECURITY_HASH_KEY = os.environ.get('CPX_SECURITY_HASH_KEY', '')
    REQUIRE_POSTBACK_HASH = _env_bool('REQUIRE_POSTBACK_HASH', 'true')
    WEBHOOK_SECRET_TOKEN = os.environ.get('WEBHOOK_SECRET_TOKEN', '')

    # JustTheTip balance service
    JUSTTHETIP_API_URL = os.environ.get('JUSTTHETIP_API_URL', '')
    JUSTTHETIP_API_KEY = os.environ.get('JUSTTHETIP_API_KEY', '')
    JUSTTHETIP_TIMEOUT = float(os.environ.get('JUSTTHETIP_TIMEOUT', '10'))

    # AI scoring (OpenAI-compatible chat completions endpoint)
    AI_SCORING_API_URL = os.environ.get('AI_SCORING_API_URL', 'https://api.openai.com/v1/chat/completions')
    AI_SCORING_API_KEY = os.environ.get('AI_SCORING_API_KEY', '')
    AI_SCORING_MODEL = os.environ.get('AI_SCORING_MODEL', 'gpt-4o-mini')
    AI_SCORING_TIMEOUT = float(os.environ.get('AI_SCORING_TIMEOUT', '10'))

    # Payout rules
    DEFAULT_MINIMUM_PAYOUT = Decimal(os.environ.get('DEFAULT_MINIMUM_PAYOUT', '5.00'))
    SPLIT_PAYOUT_THRESHOLD = Decimal(os.environ.get('SPLIT_PAYOUT_THRESHOLD', '25.00'))

    # Matching
    FEEDBACK_HISTORY_LIMIT = int(os.environ.get('FEEDBACK_HISTORY_LIMIT', '100'))
    DEFAULT_MATCH_LIMIT = int(os.environ.get('DEFAULT_MATCH_LIMIT', '3'))


config = Config()
