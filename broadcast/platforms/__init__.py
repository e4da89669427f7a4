"""
Platform adapters, keyed by platform id.
"""

from typing import Dict

from .base import Publisher
from .instagram import publish_to_instagram
from .linkedin import publish_to_linkedin
from .threads import publish_to_threads
from .tiktok import publish_to_tiktok
from .twitter import publish_to_twitter
from .youtube import publish_to_youtube

PUBLISHERS: Dict[str, Publisher] = {
    "linkedin": publish_to_linkedin,
    "instagram": publish_to_instagram,
    "tiktok": publish_to_tiktok,
    "twitter": publish_to_twitter,
    "threads": publish_to_threads,
    "youtube": publish_to_youtube,
}

__all__ = ["PUBLISHERS", "Publisher"]
