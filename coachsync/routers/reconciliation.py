"""Reconciliation endpoints: runs, manual resolution, precedence rules, conflict queries."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from coachsync.dependencies import Orchestrator
from coachsync.models.reconciliation import (
    DataConflictRead,
    PrecedenceRuleRead,
    PrecedenceRuleWrite,
    RawRecordIn,
    ReconciliationResultRead,
    ResolveConflictRequest,
)
from coachsync.reconciliation.errors import (
    AlreadyResolvedError,
    InvalidPrecedenceError,
    InvalidResolutionError,
    UnknownConflictError,
)

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


# ---------- Runs ----------

@router.post("/run/{athlete_id}", response_model=ReconciliationResultRead)
async def run_reconciliation(
    athlete_id: str, body: list[RawRecordIn], orchestrator: Orchestrator
) -> Any:
    result = await orchestrator.run(athlete_id, [r.to_domain() for r in body])
    return ReconciliationResultRead.from_domain(result)


# ---------- Conflicts ----------

@router.get("/conflicts/unresolved/{athlete_id}", response_model=list[DataConflictRead])
async def list_unresolved(athlete_id: str, orchestrator: Orchestrator) -> Any:
    conflicts = await orchestrator.find_unresolved(athlete_id)
    return [DataConflictRead.from_domain(c) for c in conflicts]


@router.get("/conflicts/requires-review", response_model=list[DataConflictRead])
async def list_requiring_review(orchestrator: Orchestrator) -> Any:
    conflicts = await orchestrator.find_requiring_review()
    return [DataConflictRead.from_domain(c) for c in conflicts]


@router.get("/conflicts/{conflict_id}", response_model=DataConflictRead)
async def get_conflict(conflict_id: str, orchestrator: Orchestrator) -> Any:
    try:
        conflict = await orchestrator.get_conflict(conflict_id)
    except UnknownConflictError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return DataConflictRead.from_domain(conflict)


@router.post("/conflicts/{conflict_id}/resolve", response_model=DataConflictRead)
async def resolve_conflict(
    conflict_id: str, body: ResolveConflictRequest, orchestrator: Orchestrator
) -> Any:
    try:
        resolved = await orchestrator.resolve_conflict(
            conflict_id,
            body.primary_platform,
            body.retained_sources,
            body.resolution,
            resolved_by=body.resolved_by,
        )
    except UnknownConflictError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AlreadyResolvedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidResolutionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return DataConflictRead.from_domain(resolved)


# ---------- Precedence rules ----------

@router.put("/rules/precedence/{athlete_id}", response_model=PrecedenceRuleRead)
async def set_precedence_rule(
    athlete_id: str, body: PrecedenceRuleWrite, orchestrator: Orchestrator
) -> Any:
    try:
        rule = await orchestrator.registry.set_precedence_rule(
            athlete_id, body.rule_name, body.platform_precedence
        )
    except InvalidPrecedenceError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return rule.to_dict()


@router.get("/rules/precedence/{athlete_id}", response_model=PrecedenceRuleRead)
async def get_precedence_rule(athlete_id: str, orchestrator: Orchestrator) -> Any:
    rule = await orchestrator.registry.get_precedence_rule(athlete_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="No precedence rule set for athlete")
    return rule.to_dict()
