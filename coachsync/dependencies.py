"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends

from coachsync.config import Settings, get_settings
from coachsync.reconciliation.config_loader import (
    ReconciliationConfig,
    get_reconciliation_config,
    load_reconciliation_config,
)
from coachsync.reconciliation.orchestrator import ReconciliationOrchestrator
from coachsync.reconciliation.postgres import (
    PostgresConflictStore,
    PostgresPrecedenceRuleStore,
)
from coachsync.reconciliation.precedence import PrecedenceRegistry
from coachsync.reconciliation.stores import (
    InMemoryConflictStore,
    InMemoryPrecedenceRuleStore,
)

logger = logging.getLogger("coachsync.dependencies")


def _reconciliation_config(settings: Settings) -> ReconciliationConfig:
    if settings.reconciliation_config_path:
        return load_reconciliation_config(Path(settings.reconciliation_config_path))
    return get_reconciliation_config()


@lru_cache
def get_orchestrator() -> ReconciliationOrchestrator:
    """Build the process-wide orchestrator for the configured store backend."""
    settings = get_settings()
    config = _reconciliation_config(settings)
    if settings.store_backend == "memory":
        logger.warning("Using in-memory reconciliation stores — data is not persisted")
        conflict_store = InMemoryConflictStore()
        rule_store = InMemoryPrecedenceRuleStore()
    else:
        conflict_store = PostgresConflictStore()
        rule_store = PostgresPrecedenceRuleStore()
    return ReconciliationOrchestrator(
        conflict_store=conflict_store,
        registry=PrecedenceRegistry(rule_store, config),
        config=config,
    )


# Annotated shortcuts for route signatures
Orchestrator = Annotated[ReconciliationOrchestrator, Depends(get_orchestrator)]
AppSettings = Annotated[Settings, Depends(get_settings)]
