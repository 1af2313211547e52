"""Secondary recommendation signals backed by stored similarities and attributions."""

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from uplift_service.infrastructure.database.stores import naive_utc, timestamps

logger = structlog.get_logger()

POPULARITY_WINDOW_DAYS = 30


class SimilaritySignalProvider:
    """Co-purchase similarity over ``product_similarities`` and popularity over attributions."""

    def __init__(self, session: AsyncSession, clock=None):
        self.session = session
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def content_recommendations(
        self, shop: str, anchors: Sequence[str], limit: int
    ) -> list[tuple[str, float]]:
        """
        Products most often bought with the anchors.

        A candidate similar to several anchors sums its scores; the total is
        averaged over the distinct anchors so the result stays in ``[0, 1]``.
        """
        anchor_set = set(anchors)
        if not anchor_set or limit <= 0:
            return []

        result = await self.session.execute(
            text("""
                SELECT similar_product_id, SUM(score) AS total_score
                FROM uplift.product_similarities
                WHERE shop = :shop AND product_id IN :anchors
                GROUP BY similar_product_id
                ORDER BY total_score DESC, similar_product_id
                LIMIT :limit
            """).bindparams(bindparam("anchors", expanding=True)),
            {"shop": shop, "anchors": sorted(anchor_set), "limit": limit + len(anchor_set)},
        )
        rows = result.fetchall()
        if not rows:
            logger.debug("No similarities for anchors", shop=shop, anchors=sorted(anchor_set))
            return []

        ranked = [
            (row.similar_product_id, float(row.total_score) / len(anchor_set))
            for row in rows
            if row.similar_product_id not in anchor_set
        ]
        return ranked[:limit]

    async def popular_recommendations(
        self, shop: str, limit: int, exclude: Sequence[str] = ()
    ) -> list[tuple[str, float]]:
        since = self._clock() - timedelta(days=POPULARITY_WINDOW_DAYS)
        result = await self.session.execute(
            text("""
                SELECT product_id, COUNT(DISTINCT order_id) AS purchases
                FROM uplift.recommendation_attributions
                WHERE shop = :shop AND created_at >= :since
                GROUP BY product_id
                ORDER BY purchases DESC, product_id
                LIMIT :limit
            """).bindparams(*timestamps("since")),
            {"shop": shop, "since": naive_utc(since), "limit": limit + len(exclude)},
        )
        rows = result.fetchall()
        if not rows:
            return []

        top = max(int(row.purchases) for row in rows) or 1
        excluded = set(exclude)
        ranked = [
            (row.product_id, int(row.purchases) / top)
            for row in rows
            if row.product_id not in excluded
        ]
        return ranked[:limit]
