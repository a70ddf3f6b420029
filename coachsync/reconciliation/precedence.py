"""Precedence registry — per-athlete platform rankings.

A rule ranks platforms with unique positive integers, rank 1 being the most
trusted source.  Each athlete has at most one rule; setting a new rule
replaces the old one.  Reads and writes for one athlete are serialized.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from coachsync.reconciliation.base import PrecedenceRule
from coachsync.reconciliation.config_loader import (
    ReconciliationConfig,
    get_reconciliation_config,
)
from coachsync.reconciliation.errors import InvalidPrecedenceError
from coachsync.reconciliation.stores import PrecedenceRuleStore

logger = logging.getLogger("coachsync.reconciliation.precedence")


def validate_precedence(
    platform_precedence: dict[str, int],
    config: ReconciliationConfig | None = None,
) -> dict[str, int]:
    """Validate a platform → rank map and return it with canonical platform slugs.

    Raises:
        InvalidPrecedenceError: If the map is empty, a platform is blank, a
            rank is not a positive integer, or two platforms share a rank.
    """
    if not platform_precedence:
        raise InvalidPrecedenceError("Platform precedence cannot be empty")

    cfg = config or get_reconciliation_config()
    validated: dict[str, int] = {}
    for platform, rank in platform_precedence.items():
        if not isinstance(platform, str) or not platform.strip():
            raise InvalidPrecedenceError(f"Invalid platform name {platform!r}")
        if isinstance(rank, bool) or not isinstance(rank, int) or rank < 1:
            raise InvalidPrecedenceError(
                f"Rank for {platform!r} must be a positive integer, got {rank!r}"
            )
        slug = cfg.canonical_platform(platform)
        if slug in validated:
            raise InvalidPrecedenceError(f"Platform {slug!r} is ranked twice")
        validated[slug] = rank

    ranks = list(validated.values())
    if len(set(ranks)) != len(ranks):
        duplicates = sorted({r for r in ranks if ranks.count(r) > 1})
        raise InvalidPrecedenceError(f"Duplicate ranks in platform precedence: {duplicates}")
    return validated


class PrecedenceRegistry:
    """Store and look up each athlete's active precedence rule.

    Usage::

        registry = PrecedenceRegistry(InMemoryPrecedenceRuleStore())
        await registry.set_precedence_rule("a-1", "coach default", {"garmin": 1, "strava": 2})
        rule = await registry.get_precedence_rule("a-1")
    """

    def __init__(
        self,
        store: PrecedenceRuleStore,
        config: ReconciliationConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_reconciliation_config()
        # Per-athlete lock and its holder count; dropped once nobody holds or awaits it
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _athlete_lock(self, athlete_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(athlete_id, asyncio.Lock())
        self._lock_users[athlete_id] = self._lock_users.get(athlete_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[athlete_id] -= 1
            if not self._lock_users[athlete_id]:
                del self._lock_users[athlete_id]
                del self._locks[athlete_id]

    async def set_precedence_rule(
        self,
        athlete_id: str,
        rule_name: str,
        platform_precedence: dict[str, int],
    ) -> PrecedenceRule:
        """Validate and store a rule, replacing the athlete's previous rule.

        Raises:
            InvalidPrecedenceError: If the rule is invalid; nothing is stored.
        """
        if not athlete_id or not str(athlete_id).strip():
            raise InvalidPrecedenceError("Athlete ID cannot be blank")
        if not rule_name or not rule_name.strip():
            raise InvalidPrecedenceError("Rule name cannot be blank")
        ranks = validate_precedence(platform_precedence, self._config)

        rule = PrecedenceRule(
            athlete_id=athlete_id,
            rule_name=rule_name.strip(),
            platform_precedence=ranks,
        )
        async with self._athlete_lock(athlete_id):
            previous = await self._store.find_by_athlete_id(athlete_id)
            saved = await self._store.save(rule)
        logger.info(
            "Set precedence rule '%s' for athlete %s%s",
            saved.rule_name,
            athlete_id,
            f" (replaces '{previous.rule_name}')" if previous else "",
        )
        return saved

    async def get_precedence_rule(self, athlete_id: str) -> PrecedenceRule | None:
        """Return the athlete's active rule, or None if none was ever set."""
        async with self._athlete_lock(athlete_id):
            return await self._store.find_by_athlete_id(athlete_id)
