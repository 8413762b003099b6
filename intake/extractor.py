"""
Content extractor clients.

The extractor is an external collaborator that turns a URL into markdown
text. Two clients are provided:

- ExtractorClient speaks the proxy contract: POST ``{"url": ...}`` and
  receive ``{"success": bool, "content": str}``.
- JinaReaderClient calls the Jina Reader API directly.

Every non-success outcome becomes ExtractionFailed; a timeout becomes
ExtractionTimeout. Neither client retries; the caller decides.
"""

import logging
import os
from typing import Dict, Optional

import requests

from .exceptions import ExtractionFailed, ExtractionTimeout

logger = logging.getLogger(__name__)

JINA_READER_URL = 'https://r.jina.ai/'


class ExtractorClient:
    """Client for an extraction proxy endpoint."""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30,
        api_key: Optional[str] = None,
        session: requests.Session = None
    ):
        """
        Initialize the client.

        Args:
            endpoint: Proxy URL accepting POST {"url": ...}
            timeout: Request timeout in seconds
            api_key: Optional bearer token
            session: Optional requests session (for connection reuse)
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.api_key = api_key
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        return headers

    def _request(self, url: str) -> requests.Response:
        return self.session.post(
            self.endpoint,
            json={'url': url},
            headers=self._headers(),
            timeout=self.timeout,
        )

    def _parse(self, url: str, response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError as e:
            raise ExtractionFailed(f"Extractor returned invalid JSON for {url}", url=url) from e

        if not isinstance(payload, dict) or not payload.get('success'):
            message = f"Extractor reported failure for {url}"
            if isinstance(payload, dict) and (payload.get('details') or payload.get('error')):
                message += f": {payload.get('details') or payload.get('error')}"
            raise ExtractionFailed(message, url=url)
        return payload.get('content') or ''

    def extract(self, url: str) -> str:
        """
        Extract the content behind a URL.

        Args:
            url: Source URL

        Returns:
            Extracted text (never empty)

        Raises:
            ExtractionTimeout: If the extractor does not answer in time
            ExtractionFailed: For any other non-success outcome
        """
        logger.info(f"Extracting content from {url}")
        try:
            response = self._request(url)
        except requests.Timeout as e:
            raise ExtractionTimeout(
                f"Extractor timed out after {self.timeout}s for {url}", url=url
            ) from e
        except requests.RequestException as e:
            raise ExtractionFailed(f"Extractor request failed for {url}: {e}", url=url) from e

        if not response.ok:
            raise ExtractionFailed(
                f"Extractor error for {url}: {response.status_code} {response.reason}",
                url=url,
                status_code=response.status_code,
            )

        content = self._parse(url, response)
        if not content.strip():
            raise ExtractionFailed(f"Extractor returned empty content for {url}", url=url)

        logger.info(f"Extracted {len(content)} characters from {url}")
        return content


class JinaReaderClient(ExtractorClient):
    """Client for the Jina Reader API (GET https://r.jina.ai/<url>)."""

    def __init__(
        self,
        base_url: str = JINA_READER_URL,
        timeout: float = 30,
        api_key: Optional[str] = None,
        session: requests.Session = None
    ):
        super().__init__(base_url, timeout=timeout, api_key=api_key, session=session)

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'text/plain', 'X-Return-Format': 'markdown'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        return headers

    def _request(self, url: str) -> requests.Response:
        return self.session.get(
            self.endpoint.rstrip('/') + '/' + url,
            headers=self._headers(),
            timeout=self.timeout,
        )

    def _parse(self, url: str, response: requests.Response) -> str:
        return response.text


def build_extractor(section: Dict) -> ExtractorClient:
    """
    Build an extractor from the 'extractor' configuration section.

    ``mode: jina`` calls Jina Reader directly; ``mode: proxy`` requires an
    ``endpoint``. The API key is read from the environment variable named by
    ``api_key_env``.
    """
    timeout = float(section.get('timeout', 30))
    api_key_env = section.get('api_key_env')
    api_key = os.environ.get(api_key_env) if api_key_env else None

    if section.get('mode', 'jina') == 'proxy':
        return ExtractorClient(section['endpoint'], timeout=timeout, api_key=api_key)
    return JinaReaderClient(
        base_url=section.get('endpoint') or JINA_READER_URL,
        timeout=timeout,
        api_key=api_key,
    )
