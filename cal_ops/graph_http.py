# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Shared request helper for Microsoft Graph calls
"""
import logging
import time

import requests

from utils.logger import StructuredLogger

logger = logging.getLogger(__name__)
structured_logger = StructuredLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


def graph_request(auth, session: requests.Session, method: str, url: str,
                  extra_headers: dict = None, timeout: int = 30, **kwargs) -> requests.Response:
    """Send a Graph request, refreshing the token once on 401"""
    headers = dict(auth.get_headers())
    if extra_headers:
        headers.update(extra_headers)

    started = time.monotonic()
    response = session.request(method, url, headers=headers, timeout=timeout, **kwargs)

    if response.status_code == 401:
        logger.info("Graph returned 401, refreshing token")
        auth.clear_tokens()
        headers = dict(auth.get_headers())
        if extra_headers:
            headers.update(extra_headers)
        response = session.request(method, url, headers=headers, timeout=timeout, **kwargs)

    structured_logger.log_api_call(
        method, url.replace(GRAPH_BASE_URL, ''),
        status_code=response.status_code,
        duration_ms=(time.monotonic() - started) * 1000
    )
    return response
