"""
Financial Blueprint Models

Enumerations shared by the aggregation engine and the SQLAlchemy model
for the versioned document store (blueprints, initiatives, preferences).
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, JSON, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.ext.declarative import declarative_base

Base = declarative_base()


# =============================================================================
# ENUMS
# =============================================================================

class LineNature(str, Enum):
    """Sign behaviour of a P&L line"""
    REVENUE = "revenue"
    COST = "cost"
    SUMMARY = "summary"    # Aggregates carry no intrinsic sign


class ComputationMode(str, Enum):
    """How a line's monthly values are derived"""
    MANUAL = "manual"          # Entered values
    CHILDREN = "children"      # Sum of direct children
    CUMULATIVE = "cumulative"  # Running subtotal of manual lines in document order


class RatioFormat(str, Enum):
    PERCENTAGE = "percentage"
    MULTIPLE = "multiple"


class OverlayKind(str, Enum):
    """Which initiative figures feed an overlay"""
    PLAN = "plan"      # entry.distribution
    ACTUAL = "actual"  # entry.actuals


class ViewMode(str, Enum):
    """Time bucketing for chart series"""
    MONTHS = "months"
    QUARTERS = "quarters"
    CALENDAR = "calendar"
    FISCAL = "fiscal"


class BaseMode(str, Enum):
    BASELINE = "baseline"
    ZERO = "zero"


class SortMode(str, Enum):
    IMPACT_DESC = "impact-desc"
    IMPACT_ASC = "impact-asc"
    DELTA = "delta"
    NAME = "name"


class DocumentKind(str, Enum):
    BLUEPRINT = "blueprint"
    INITIATIVE = "initiative"
    DYNAMICS_PREFERENCES = "dynamics-preferences"


INITIATIVE_STAGE_KEYS = ["l0", "l1", "l2", "l3", "l4", "l5"]

INITIATIVE_FINANCIAL_KINDS = [
    "recurring-benefits",
    "recurring-costs",
    "oneoff-benefits",
    "oneoff-costs",
]


# =============================================================================
# DOCUMENT STORE
# =============================================================================

class FinancialDocument(Base):
    """
    A versioned JSON document.

    Every write bumps `version`; replacements are only accepted when the
    caller's expected version matches the stored one.
    """
    __tablename__ = "financial_documents"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(50), nullable=False)
    document_key = Column(String(200), nullable=False)

    definition = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=1)

    # Audit
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("kind", "document_key", name="uq_financial_documents_kind_key"),
        CheckConstraint("version >= 1", name="check_document_version_positive"),
        Index("ix_financial_documents_kind", "kind"),
    )
