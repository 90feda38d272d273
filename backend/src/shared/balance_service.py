"""
JustTheTip balance service client.
Credits a user's Discord-linked tipping balance; the primary payout rail.
"""
import httpx
from decimal import Decimal
from typing import Optional
from shared.config import config
from shared.errors import ConfigError, UpstreamError
from shared.logging import logger

SOURCE_NAME = 'qualifyfirst'


class BalanceServiceClient:
    """HTTP client for the JustTheTip API."""

    def __init__(
        self,
        api_url: str = None,
        api_key: str = None,
        timeout: float = None,
        http_client: Optional[httpx.Client] = None
    ):
        self.api_url = (api_url if api_url is not None else config.JUSTTHETIP_API_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else config.JUSTTHETIP_API_KEY
        self.timeout = timeout if timeout is not None else config.JUSTTHETIP_TIMEOUT
        self._http_client = http_client

    def _get_http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.timeout)
        return self._http_client

    def _headers(self) -> dict:
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

    def _check_configured(self):
        if not self.api_url or not self.api_key:
            raise ConfigError('JustTheTip API URL or key not configured')

    def credit_balance(self, discord_id: str, amount: Decimal, reason: str) -> None:
        """
        Credit a Discord account's balance.

        Raises:
            ConfigError: service URL/key not configured
            UpstreamError: transport failure or non-2xx answer
        """
        self._check_configured()
        try:
            response = self._get_http_client().post(
                f'{self.api_url}/api/credit-balance',
                headers=self._headers(),
                json={
                    'discord_id': discord_id,
                    'amount': str(amount),
                    'reason': reason,
                    'source': SOURCE_NAME,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"JustTheTip credit returned HTTP {e.response.status_code} for {discord_id}")
            raise UpstreamError(f'Balance service returned HTTP {e.response.status_code}') from e
        except httpx.HTTPError as e:
            logger.error(f"JustTheTip credit error: {e}")
            raise UpstreamError('Balance service unavailable') from e

        logger.info(f"Credited {amount} to Discord account {discord_id}")

    def get_user_balance(self, discord_id: str) -> Decimal:
        """Current JustTheTip balance, or 0 when it cannot be fetched."""
        if not self.api_url or not self.api_key:
            return Decimal('0')
        try:
            response = self._get_http_client().get(
                f'{self.api_url}/api/balance/{discord_id}',
                headers=self._headers(),
            )
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                logger.warning(f"JustTheTip balance answer for {discord_id} was not an object")
                return Decimal('0')
            return Decimal(str(body.get('balance') or 0))
        except (httpx.HTTPError, ValueError, ArithmeticError) as e:
            logger.warning(f"JustTheTip balance check error: {e}")
            return Decimal('0')


def payout_reason(transaction_type: str, source_id: Optional[str]) -> str:
    """Human-readable memo attached to a balance credit."""
    reasons = {
        'survey_completion': f'Survey completion reward - Survey #{source_id}',
        'referral_bonus': f'Referral bonus - Referral #{source_id}',
        'microtask_completion': f'Microtask completion reward - Task #{source_id}',
        'manual_payout': 'Manual payout from QualifyFirst',
    }
    return reasons.get(transaction_type, 'QualifyFirst earnings')
