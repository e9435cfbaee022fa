"""
Manga HTTP - One shared requests session per run, with retry and error mapping
"""

import time
import random
import logging
import requests
from typing import Dict, Optional

from manga_errors import ErrorCause, ProviderError

logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRY_STATUS = {429, 500, 502, 503, 504}


class HttpClient:
    """Thin wrapper over requests.Session shared by every provider"""

    def __init__(self, user_agent: str = '', timeout: float = 30, max_retries: int = 2,
                 session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries
        if user_agent:
            self.session.headers['User-Agent'] = user_agent

    @classmethod
    def from_settings(cls, settings: Dict) -> 'HttpClient':
        return cls(user_agent=settings.get('user_agent', ''),
                   timeout=settings.get('timeout', 30),
                   max_retries=settings.get('max_retries', 2))

    def _retry_delay(self, attempt: int):
        time.sleep(random.uniform(0.5, 1.0) * attempt)

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                **kwargs) -> requests.Response:
        """Issue a request; non-2xx and transport failures become ProviderError"""
        kwargs.setdefault('timeout', self.timeout)
        last_error = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                logger.info(f"Retrying {method} {url} (attempt {attempt + 1}/{self.max_retries + 1})")
                self._retry_delay(attempt)

            try:
                resp = self.session.request(method, url, headers=headers, **kwargs)
            except requests.exceptions.Timeout as e:
                last_error = ProviderError(ErrorCause.NETWORK, f"Timed out: {e}", url)
                continue
            except requests.exceptions.RequestException as e:
                last_error = ProviderError(ErrorCause.NETWORK, f"Request failed: {e}", url)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                return resp
            if status in (401, 403):
                raise ProviderError(ErrorCause.AUTH_REQUIRED, f"HTTP {status}", url)
            if status == 404:
                raise ProviderError(ErrorCause.NOT_FOUND, f"HTTP {status}", url)

            last_error = ProviderError(ErrorCause.NETWORK, f"HTTP {status}", url)
            if status not in RETRY_STATUS:
                break

        logger.warning(f"{method} {url} failed: {last_error}")
        raise last_error

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> requests.Response:
        return self.request('GET', url, headers=headers, **kwargs)

    def post(self, url: str, data: bytes = None, headers: Optional[Dict[str, str]] = None,
             **kwargs) -> requests.Response:
        return self.request('POST', url, headers=headers, data=data, **kwargs)

    def close(self):
        self.session.close()
