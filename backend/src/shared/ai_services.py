"""
AI text-completion service used for match scoring.
Talks to an OpenAI-compatible chat completions endpoint over httpx.
"""
import httpx
from typing import Optional
from shared.config import config
from shared.errors import ConfigError, UpstreamError
from shared.logging import logger


class TextCompletionClient:
    """Minimal chat-completions client. Raises on any failure; never retries."""

    def __init__(
        self,
        api_url: str = None,
        api_key: str = None,
        model: str = None,
        timeout: float = None,
        http_client: Optional[httpx.Client] = None
    ):
        self.api_url = api_url if api_url is not None else config.AI_SCORING_API_URL
        self.api_key = api_key if api_key is not None else config.AI_SCORING_API_KEY
        self.model = model or config.AI_SCORING_MODEL
        self.timeout = timeout if timeout is not None else config.AI_SCORING_TIMEOUT
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_url)

    def _get_http_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=self.timeout)
        return self._http_client

    def complete(
        self,
        prompt: str,
        system_prompt: str = None,
        temperature: float = 0.1,
        max_tokens: int = 300
    ) -> str:
        """
        Send one chat completion request and return the first choice's text.

        Raises:
            ConfigError: no API key configured
            UpstreamError: transport error, non-2xx status or unexpected body
        """
        if not self.enabled:
            raise ConfigError('AI scoring API key not configured')

        messages = []
        if system_prompt:
            messages.append({'role': 'system', 'content': system_prompt})
        messages.append({'role': 'user', 'content': prompt})

        try:
            response = self._get_http_client().post(
                self.api_url,
                headers={
                    'Authorization': f'Bearer {self.api_key}',
                    'Content-Type': 'application/json',
                },
                json={
                    'model': self.model,
                    'messages': messages,
                    'temperature': temperature,
                    'max_tokens': max_tokens,
                },
            )
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"AI scoring request timed out: {e}")
            raise UpstreamError('AI scoring request timed out') from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"AI scoring returned HTTP {e.response.status_code}")
            raise UpstreamError(f'AI scoring returned HTTP {e.response.status_code}') from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"AI scoring request failed: {e}")
            raise UpstreamError('AI scoring request failed') from e

        try:
            content = body['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamError('AI scoring response had no message content') from e
        if not isinstance(content, str):
            raise UpstreamError('AI scoring response content was not text')
        return content
