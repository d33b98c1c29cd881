from typing import Optional

import httpx

from tripcurator import config
from tripcurator.logsetup import get_logger

logger = get_logger(__name__)


class NaverBlogSearch:
    """
    Blog-post hit counts from the Naver search API, used as a popularity signal.
    """
    SEARCH_ENDPOINT = "https://openapi.naver.com/v1/search/blog.json"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        *,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    async def blog_count(self, query: str) -> Optional[int]:
        """Total number of blog posts matching ``query``; ``None`` on any failure."""
        if not self.client_id or not self.client_secret or not query.strip():
            return None

        headers = {
            "X-Naver-Client-Id": self.client_id,
            "X-Naver-Client-Secret": self.client_secret,
        }
        params = {"query": query, "display": 10}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.SEARCH_ENDPOINT, params=params, headers=headers)
                response.raise_for_status()
                data = response.json()
            total = data.get("total")
            return int(total) if total is not None else None
        except (httpx.HTTPError, ValueError, TypeError, AttributeError):
            logger.warning("Blog search failed for %r", query, exc_info=True)
            return None
