"""Scenario catalog and call history endpoints.

Calls themselves run over the /ws/call websocket; these routes list what
can be practiced, what is running and what has finished.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from src.api.dependencies import get_call_logs, get_registry
from src.api.websocket.registry import CallRegistry
from src.db.repositories.calls import CallLogRepository
from src.prompts.persona import DIFFICULTY_MODIFIERS, PERSONALITY_NAMES, SCENARIOS

router = APIRouter(tags=["Calls"])


# =============================================================================
# Response Schemas
# =============================================================================


class ScenarioResponse(BaseModel):
    """A practice scenario from the catalog."""

    id: str
    title: str
    client_name: str
    client_type: str
    description: str
    personality: str
    difficulty: str
    opening_line: str | None


class ScenarioCatalogResponse(BaseModel):
    scenarios: list[ScenarioResponse]
    personalities: dict[str, str]
    difficulties: list[str]


class CallSummaryResponse(BaseModel):
    """Finished call, without its transcript."""

    session_id: str
    source: str
    scenario_id: str
    client_name: str | None
    started_at: str
    duration_seconds: float
    end_reason: str | None
    utterances: int


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/scenarios", response_model=ScenarioCatalogResponse)
async def list_scenarios() -> ScenarioCatalogResponse:
    """Scenarios, DISC personalities and difficulty levels a call can use."""
    return ScenarioCatalogResponse(
        scenarios=[ScenarioResponse(**scenario.to_dict()) for scenario in SCENARIOS.values()],
        personalities=dict(PERSONALITY_NAMES),
        difficulties=list(DIFFICULTY_MODIFIERS),
    )


@router.get("/calls", response_model=list[CallSummaryResponse])
async def list_calls(
    scenario_id: str | None = Query(None, description="Filter by scenario"),
    end_reason: str | None = Query(None, description="Filter by end reason"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    call_logs: CallLogRepository = Depends(get_call_logs),
) -> list[CallSummaryResponse]:
    """Finished calls, newest first."""
    logs = await call_logs.list(
        scenario_id=scenario_id,
        end_reason=end_reason,
        limit=limit,
        offset=offset,
    )
    return [CallSummaryResponse(**log.summary()) for log in logs]


@router.get("/calls/active")
async def list_active_calls(registry: CallRegistry = Depends(get_registry)) -> dict[str, Any]:
    """Calls currently in progress."""
    calls = await registry.snapshot()
    return {"count": len(calls), "max_calls": registry.max_calls, "calls": calls}


@router.get("/calls/{session_id}")
async def get_call(
    session_id: str,
    registry: CallRegistry = Depends(get_registry),
    call_logs: CallLogRepository = Depends(get_call_logs),
) -> dict[str, Any]:
    """A live call's status, or a finished call with its full transcript."""
    entry = await registry.get(session_id)
    if entry is not None:
        return entry.controller.status()

    log = await call_logs.get_by_id(session_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Call not found")
    return log.to_dict()
