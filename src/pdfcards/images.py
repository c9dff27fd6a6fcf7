"""Image lookup for cards with a deterministic fallback."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import requests
from pydantic import BaseModel

from .config import ImageConfig, ImageProvider
from .ids import image_seed

logger = logging.getLogger(__name__)


class PhotoUrls(BaseModel):
    regular: str
    small: str
    thumb: str


class PhotoResponse(BaseModel):
    """Photo body returned by Unsplash and by the relay service."""
    id: str
    urls: PhotoUrls


class ImageEnricher:
    """Assigns a representative image URL to each card.

    Every lookup degrades to the fallback URL for the same seed, so a card
    always receives an image and image failures never fail an ingestion run.

    Lookups run on a thread pool. Without an explicit ``session`` every
    worker thread gets its own ``requests.Session``; a session passed in is
    shared by all workers and must tolerate concurrent use.
    """

    def __init__(self, config: Optional[ImageConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or ImageConfig()
        self._shared_session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._shared_session is not None:
            return self._shared_session
        if not hasattr(self._local, "session"):
            self._local.session = requests.Session()
        return self._local.session

    def fallback_url(self, seed: str) -> str:
        return self.config.fallback_url_template.format(seed=seed)

    def is_configured(self) -> bool:
        """Whether live lookups can be made with the current settings."""
        if not self.config.enabled:
            return False
        if self.config.provider == ImageProvider.UNSPLASH:
            return bool(self.config.access_key)
        return bool(self.config.service_url)

    def lookup(self, seed: str) -> str:
        """Fetch an image URL for ``seed`` from the configured provider.

        Raises:
            requests.RequestException: on transport errors or non-2xx status.
            ValidationError: if the body does not match :class:`PhotoResponse`.
        """
        if self.config.provider == ImageProvider.UNSPLASH:
            response = self._request_unsplash()
        else:
            response = self._request_relay(seed)

        response.raise_for_status()
        photo = PhotoResponse.model_validate(response.json())
        logger.debug(f"Image {photo.id} for seed {seed}")
        return photo.urls.regular

    def _request_unsplash(self) -> requests.Response:
        # Unsplash picks a random photo; the seed only names the card
        headers = {
            "Authorization": f"Client-ID {self.config.access_key}",
            "Accept-Version": "v1",
        }
        return self.session.get(
            self.config.api_url,
            params={"collections": self.config.collection_id},
            headers=headers,
            timeout=self.config.timeout,
        )

    def _request_relay(self, seed: str) -> requests.Response:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.config.access_key:
            headers["Authorization"] = f"Bearer {self.config.access_key}"
        return self.session.post(
            self.config.service_url,
            json={"collectionId": self.config.collection_id, "seed": seed},
            headers=headers,
            timeout=self.config.timeout,
        )

    def image_for(self, seed: str) -> str:
        """Image URL for ``seed``; never raises and never returns an empty string."""
        if not self.is_configured():
            return self.fallback_url(seed)

        try:
            url = self.lookup(seed)
        except Exception as e:
            logger.warning(f"Image lookup failed for seed {seed}, using fallback: {e}")
            url = None

        return url or self.fallback_url(seed)

    def enrich(self, document_id: str, count: int) -> List[str]:
        """Image URLs for cards ``1..count`` of a document, in card order."""
        if count <= 0:
            return []

        seeds = [image_seed(document_id, order) for order in range(1, count + 1)]
        workers = min(self.config.max_concurrency, count)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            urls = list(executor.map(self.image_for, seeds))

        fallbacks = sum(1 for seed, url in zip(seeds, urls) if url == self.fallback_url(seed))
        logger.info(f"Assigned {len(urls)} images for document {document_id} ({fallbacks} fallbacks)")
        return urls
