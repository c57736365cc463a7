"""
Financials API

Blueprint editing, the financial dynamics view, ratio summaries, the P&L
tree, data-quality guardrails and per-account dashboard preferences.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from blueprint_hierarchy import build_hierarchy
from blueprint_service import BlueprintService
from contribution_overlay import build_contribution_overlay
from database import get_db
from document_store import DocumentNotFoundError, VersionConflictError
from dynamics_preferences import DynamicsSettings, PreferencesService
from financial_dynamics_engine import (
    FinancialDynamicsEngine, UnknownBucketError, UnknownLineError, compute_horizon_ratios
)
from financial_math import build_month_horizon
from financial_tree import build_financial_tree
from financials_models import OverlayKind
from fiscal_calendar import ReportingPeriod
from guardrails import build_quality_report


router = APIRouter(prefix="/financials", tags=["Financials"])
preferences_router = APIRouter(prefix="/financial-dynamics", tags=["Financial Dynamics"])


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEMAS
# ═══════════════════════════════════════════════════════════════════════════════

class BlueprintSaveRequest(BaseModel):
    """Replace the blueprint if it is still at `expectedVersion`."""
    blueprint: Any = None
    expectedVersion: Any = None


class DynamicsRequest(BaseModel):
    """Dashboard settings plus the current reporting period."""
    settings: Optional[Dict[str, Any]] = None
    periodMonth: Optional[int] = None
    periodYear: Optional[int] = None


class BreakdownRequest(DynamicsRequest):
    lineId: str
    bucketKey: str
    mode: OverlayKind = OverlayKind.PLAN


class PreferencesUpdate(BaseModel):
    settings: Optional[Dict[str, Any]] = None
    favorites: Optional[List[Any]] = None


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _raise_http(e: ValueError):
    if isinstance(e, VersionConflictError):
        raise HTTPException(status_code=409, detail={
            "code": "version-conflict", "message": "The blueprint version is outdated."
        })
    if isinstance(e, (DocumentNotFoundError, UnknownLineError, UnknownBucketError)):
        raise HTTPException(status_code=404, detail={"code": "not-found", "message": str(e)})
    raise HTTPException(status_code=400, detail={"code": "invalid-input", "message": str(e)})


def _build_engine(data: DynamicsRequest, db: Session) -> FinancialDynamicsEngine:
    service = BlueprintService(db)
    record = service.get_blueprint()
    return FinancialDynamicsEngine(
        blueprint=record.blueprint,
        initiatives=service.load_initiatives(),
        settings=DynamicsSettings.from_dict(data.settings),
        period=ReportingPeriod.from_values(data.periodMonth, data.periodYear),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# BLUEPRINT
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/blueprint")
def get_blueprint(db: Session = Depends(get_db)):
    """Get the P&L blueprint, creating the default one on first use."""
    return BlueprintService(db).get_blueprint().to_dict()


@router.put("/blueprint")
def save_blueprint(data: BlueprintSaveRequest, db: Session = Depends(get_db)):
    """Sanitize and save the blueprint with an expected-version precondition."""
    try:
        record = BlueprintService(db).save_blueprint(data.blueprint, data.expectedVersion)
    except ValueError as e:
        _raise_http(e)
    return record.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# DYNAMICS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/dynamics")
def compute_dynamics(data: DynamicsRequest, db: Session = Depends(get_db)):
    """Compute the financial dynamics view."""
    try:
        output = _build_engine(data, db).compute()
    except ValueError as e:
        _raise_http(e)
    return output.to_dict()


@router.post("/dynamics/breakdown")
def compute_breakdown(data: BreakdownRequest, db: Session = Depends(get_db)):
    """Per-initiative breakdown for a (line, bucket, plan|actual) selection."""
    try:
        view = _build_engine(data, db).breakdown(data.lineId, data.bucketKey, data.mode)
    except ValueError as e:
        _raise_http(e)
    return view.to_dict()


@router.get("/ratios")
def get_ratios(
    periodMonth: Optional[int] = Query(None, ge=1, le=12),
    periodYear: Optional[int] = Query(None),
    db: Session = Depends(get_db)
):
    """Ratio summaries of the base P&L over the blueprint horizon."""
    blueprint = BlueprintService(db).get_blueprint().blueprint
    period = ReportingPeriod.from_values(periodMonth, periodYear)
    return {
        "ratios": [summary.to_dict() for summary in compute_horizon_ratios(blueprint, period)],
    }


@router.get("/tree")
def get_tree(
    year: Optional[int] = Query(None),
    stages: Optional[List[str]] = Query(None),
    db: Session = Depends(get_db)
):
    """P&L tree for one calendar year."""
    service = BlueprintService(db)
    blueprint = service.get_blueprint().blueprint
    tree = build_financial_tree(blueprint, service.load_initiatives(), year=year, stage_keys=stages)
    return tree.to_dict()


@router.get("/guardrails")
def get_guardrails(db: Session = Depends(get_db)):
    """Data-quality report for the blueprint and initiative links."""
    service = BlueprintService(db)
    blueprint = service.get_blueprint().blueprint
    month_keys = build_month_horizon(blueprint.start_month, blueprint.month_count)
    overlay = build_contribution_overlay(
        service.load_initiatives(), blueprint.line_by_code(), month_keys, OverlayKind.PLAN
    )
    report = build_quality_report(blueprint.lines, overlay, build_hierarchy(blueprint.lines))
    return report.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# PREFERENCES
# ═══════════════════════════════════════════════════════════════════════════════

@preferences_router.get("/preferences/{account_id}")
def get_preferences(account_id: str, db: Session = Depends(get_db)):
    """Get dashboard settings and favorites for an account."""
    return PreferencesService(db).get_preferences(account_id).to_dict()


@preferences_router.put("/preferences/{account_id}")
def save_preferences(account_id: str, data: PreferencesUpdate, db: Session = Depends(get_db)):
    """Merge a partial preferences update."""
    payload = data.dict(exclude_none=True)
    return PreferencesService(db).save_preferences(account_id, payload).to_dict()
