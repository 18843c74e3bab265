"""
Redis GEO-based point index.

This module provides:
- Geospatial indexing of owner points (drivers, open ride pickups) with GEOADD
- Radius queries sorted nearest-first with GEORADIUS
- Freshness filtering through a companion sorted set of last-update timestamps
- Pruning of stale members

Architecture:
- `<key>` is a Redis GEO set (longitude/latitude per owner id)
- `<key>:ts` is a sorted set scored by the epoch timestamp of the last upsert
- Both are written in one MULTI/EXEC pipeline so a member never exists in one
  set and not the other
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set, Tuple

import redis
from django.utils import timezone

from .conf import ride_engine_setting
from .exceptions import translate_store_errors
from .fast_kv import get_redis_client

logger = logging.getLogger(__name__)

ExtraFilter = Callable[[List[int]], Set[int]]


@dataclass
class GeoHit:
    """One query result."""
    owner_id: int
    distance_m: float
    latitude: float
    longitude: float


class GeoIndex:
    """
    Point index over a Redis GEO set.

    Provides:
    - upsert(owner, lat, lng, timestamp)
    - query(lat, lng, radius, limit, min_timestamp, extra_filter)
    - position / remove / prune
    """

    def __init__(self, key: str, redis_client: Optional[redis.Redis] = None):
        self.key = key
        self.ts_key = f"{key}:ts"
        self._redis = redis_client or get_redis_client()
        self._overfetch = ride_engine_setting("GEO_OVERFETCH_FACTOR")

    # ---------------------- Writes ----------------------

    @translate_store_errors("geo upsert")
    def upsert(self, owner_id: int, lat: float, lng: float, timestamp: Optional[float] = None) -> None:
        if timestamp is None:
            timestamp = timezone.now().timestamp()
        member = str(owner_id)
        pipe = self._redis.pipeline(transaction=True)
        pipe.geoadd(self.key, (float(lng), float(lat), member))
        pipe.zadd(self.ts_key, {member: float(timestamp)})
        pipe.execute()

    @translate_store_errors("geo remove")
    def remove(self, owner_id: int) -> None:
        member = str(owner_id)
        pipe = self._redis.pipeline(transaction=True)
        pipe.zrem(self.key, member)
        pipe.zrem(self.ts_key, member)
        pipe.execute()

    @translate_store_errors("geo prune")
    def prune(self, older_than: float) -> int:
        """Remove members whose last upsert is strictly older than `older_than`."""
        stale = self._redis.zrangebyscore(self.ts_key, "-inf", f"({older_than}")
        if not stale:
            return 0
        pipe = self._redis.pipeline(transaction=True)
        pipe.zrem(self.key, *stale)
        pipe.zrem(self.ts_key, *stale)
        pipe.execute()
        logger.info("Pruned %d stale members from %s", len(stale), self.key)
        return len(stale)

    # ---------------------- Reads ----------------------

    @translate_store_errors("geo position")
    def position(self, owner_id: int) -> Optional[Tuple[float, float, Optional[float]]]:
        """Return (lat, lng, timestamp) for an owner, or None if not indexed."""
        member = str(owner_id)
        pos = self._redis.geopos(self.key, member)
        if not pos or not pos[0]:
            return None
        lng, lat = pos[0]
        return lat, lng, self._redis.zscore(self.ts_key, member)

    @translate_store_errors("geo query")
    def query(
        self,
        lat: float,
        lng: float,
        radius_m: float,
        limit: int,
        min_timestamp: Optional[float] = None,
        extra_filter: Optional[ExtraFilter] = None,
    ) -> List[GeoHit]:
        """
        Query owners within `radius_m` of a point, nearest first.

        Args:
            lat: Center latitude
            lng: Center longitude
            radius_m: Search radius in meters
            limit: Max hits to return
            min_timestamp: Drop owners whose last upsert is older than this
            extra_filter: Called with candidate ids, returns the ids to keep

        Returns:
            List of GeoHit sorted by distance (empty when nothing matches)
        """
        fetch = max(limit, 1) * self._overfetch
        while True:
            raw = self._redis.georadius(
                self.key,
                float(lng), float(lat),
                radius_m,
                unit="m",
                withdist=True,
                withcoord=True,
                count=fetch,
                sort="ASC",
            )
            hits = self._filter(raw, min_timestamp, extra_filter)
            # Stop once we have enough, or once Redis had nothing more to give
            if len(hits) >= limit or len(raw) < fetch:
                return hits[:limit]
            fetch *= 2

    def _filter(
        self,
        raw: Iterable,
        min_timestamp: Optional[float],
        extra_filter: Optional[ExtraFilter],
    ) -> List[GeoHit]:
        hits = []
        for member, distance, coords in raw:
            hits.append(GeoHit(
                owner_id=int(member),
                distance_m=float(distance),
                latitude=coords[1],
                longitude=coords[0],
            ))

        if hits and min_timestamp is not None:
            pipe = self._redis.pipeline(transaction=False)
            for hit in hits:
                pipe.zscore(self.ts_key, str(hit.owner_id))
            scores = pipe.execute()
            hits = [
                hit for hit, score in zip(hits, scores)
                if score is not None and score >= min_timestamp
            ]

        if hits and extra_filter is not None:
            keep = extra_filter([hit.owner_id for hit in hits])
            hits = [hit for hit in hits if hit.owner_id in keep]

        return hits
