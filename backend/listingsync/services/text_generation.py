"""
Generative text client

The service is opaque: POST {"prompt": ...} and read {"text": ...} back.
"""
from typing import Optional

import requests
from flask import current_app

from ..errors import TextGenerationError
from ..utils.logger import get_logger
from .sync.session_pool import get_request_session_pool

logger = get_logger('text_generation')


class TextGenerationClient:

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, session=None):
        config = current_app.config
        self.url = url or config.get('TEXT_GENERATION_URL')
        self.api_key = api_key or config.get('TEXT_GENERATION_API_KEY')
        self.timeout = timeout or config.get('TEXT_GENERATION_TIMEOUT', 30)
        self._session = session or get_request_session_pool()

    def generate(self, prompt: str) -> str:
        if not self.url:
            raise TextGenerationError('Text generation service is not configured')

        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'

        try:
            response = self._session.request(
                'POST', self.url, json={'prompt': prompt}, headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TextGenerationError(f'Text generation request failed: {e}') from e

        if response.status_code >= 400:
            raise TextGenerationError(
                f'Text generation service returned HTTP {response.status_code}',
                {'status_code': response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise TextGenerationError('Text generation service returned invalid JSON') from e

        text = payload.get('text') if isinstance(payload, dict) else None
        if not text or not isinstance(text, str):
            raise TextGenerationError('Text generation service returned no text')
        return text.strip()
