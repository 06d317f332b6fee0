"""Site architecture: shortest click depth of each crawled page from the seed."""

import logging
from collections import deque
from typing import Mapping, Optional

from siteaudit.models import CrawledPage, SiteDepthMap

logger = logging.getLogger(__name__)


def build_depth_map(
    pages: Mapping[str, CrawledPage], seed_url: Optional[str] = None
) -> SiteDepthMap:
    """BFS over links between crawled pages.

    Only links that point at another crawled page are traversed, so pages
    that were crawled but are not reachable through crawled links are
    omitted.

    Args:
        pages: Page map returned by the crawler (insertion order starts at the seed)
        seed_url: Root of the traversal; defaults to the first crawled page

    Returns:
        SiteDepthMap with depths and per-depth groups
    """
    depth_map = SiteDepthMap()
    if not pages:
        return depth_map

    root = seed_url if seed_url in pages else next(iter(pages))
    depth_map.depths[root] = 0
    queue = deque([root])

    while queue:
        url = queue.popleft()
        depth = depth_map.depths[url]
        for link in pages[url].outbound_links:
            if link in pages and link not in depth_map.depths:
                depth_map.depths[link] = depth + 1
                queue.append(link)

    for url, depth in depth_map.depths.items():
        depth_map.groups.setdefault(depth, []).append({
            "url": url,
            "title": pages[url].title or "No title",
        })

    logger.debug(
        f"Depth map covers {len(depth_map.depths)}/{len(pages)} pages, "
        f"max depth {depth_map.max_depth}"
    )
    return depth_map
