"""Session request and response models."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import BaseModel, Field

from estimator.models.estimate import (
    Customer,
    EstimateNode,
    EstimateTotals,
    IntegrityWarning,
    TreeChanges,
)

if TYPE_CHECKING:
    from estimator.core.session import EstimateSession


class SessionCreate(BaseModel):
    """Request model for opening an estimate session.

    Without ``estimate_id`` the session starts an empty, unsaved estimate.
    """

    estimate_id: str | None = None
    customer: Customer | None = None


class SessionResponse(BaseModel):
    """API response model for an estimate session."""

    session_id: UUID
    estimate_id: str | None = None
    customer: Customer | None = None
    tree: list[EstimateNode] = Field(default_factory=list)
    totals: EstimateTotals
    has_unsaved_changes: bool = False
    warnings: list[IntegrityWarning] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(
        cls,
        session: "EstimateSession",
        warnings: list[IntegrityWarning] | None = None,
    ) -> "SessionResponse":
        """Create response from session state."""
        return cls(
            session_id=session.id,
            estimate_id=session.current_estimate_id,
            customer=session.selected_customer,
            tree=list(session.tree),
            totals=session.totals,
            has_unsaved_changes=not session.pending_changes().is_empty,
            warnings=warnings or [],
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class MutationResponse(BaseModel):
    """Result of a single tree mutation."""

    node: EstimateNode | None = None
    changes: TreeChanges
    totals: EstimateTotals


class SaveResponse(BaseModel):
    """Result of persisting a session."""

    estimate_id: str
    id_mapping: dict[str, str] = Field(default_factory=dict)
    saved_rows: int = 0
    totals: EstimateTotals
