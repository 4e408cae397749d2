"""Relationship graph builder.

Edges link one ``Subject`` to one ``Evaluator`` with a free-text label
("Manager", "Peer", "Self", ...).  For a fixed anchor (a subject or an
evaluator) the builder resolves each counterpart employee code through the
``IdentityResolver`` and then:

- creates a new active edge when none exists for the pair;
- reactivates an inactive edge (relabelling it when a label was supplied);
- reports an already active edge as a duplicate, or in merge mode relabels
  it when the supplied label differs from the stored one.

Nothing here raises for a single bad counterpart; failures are collected
on ``RelationshipResult``.  Only a missing anchor raises ``NotFoundError``.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from feedback360.core.errors import NotFoundError
from feedback360.db.models import RELATIONSHIP_LABEL_MAX, SELF_LABEL, RelationshipEdge
from feedback360.db.repositories import RelationshipEdgeRepository
from feedback360.db.session import flush
from feedback360.identity.resolver import IdentityResolver, Role

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Peer"


@dataclass
class Counterpart:
    employee_code: str
    label: str | None = None


@dataclass
class RelationshipResult:
    successful_connections: int = 0
    failed_employee_ids: list[str] = field(default_factory=list)
    duplicate_connections: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class _Outcome:
    """Per-call bookkeeping used to derive the warnings."""

    not_found: list[str] = field(default_factory=list)
    self_mismatch: list[str] = field(default_factory=list)
    bad_label: list[str] = field(default_factory=list)
    relabelled: list[str] = field(default_factory=list)


def _as_counterparts(items: Iterable[Counterpart | tuple[str, str | None] | str]) -> list[Counterpart]:
    counterparts: list[Counterpart] = []
    for item in items:
        if isinstance(item, Counterpart):
            counterparts.append(item)
        elif isinstance(item, str):
            counterparts.append(Counterpart(employee_code=item))
        else:
            code, label = item
            counterparts.append(Counterpart(employee_code=code, label=label))
    return counterparts


def is_self_label(label: str) -> bool:
    return label.strip().casefold() == SELF_LABEL.casefold()


class RelationshipGraphBuilder:
    """Create, deduplicate and relabel subject/evaluator edges."""

    def __init__(self, db_session: Session, resolver: IdentityResolver) -> None:
        self.db = db_session
        self.resolver = resolver
        self.edges = RelationshipEdgeRepository(db_session)

    # -- create / merge -------------------------------------------------------

    def create_edges(
        self,
        tenant_id: UUID,
        anchor_id: UUID,
        counterparts: Iterable[Counterpart | tuple[str, str | None] | str],
        anchor_role: Role = Role.SUBJECT,
    ) -> RelationshipResult:
        """Add edges from the anchor to each counterpart; active edges are duplicates."""
        return self._apply(tenant_id, anchor_id, _as_counterparts(counterparts), anchor_role, merge=False)

    def merge_edges(
        self,
        tenant_id: UUID,
        anchor_id: UUID,
        counterparts: Iterable[Counterpart | tuple[str, str | None] | str],
        anchor_role: Role = Role.SUBJECT,
    ) -> RelationshipResult:
        """Like ``create_edges`` but relabels active edges whose label changed."""
        return self._apply(tenant_id, anchor_id, _as_counterparts(counterparts), anchor_role, merge=True)

    def _apply(
        self,
        tenant_id: UUID,
        anchor_id: UUID,
        counterparts: list[Counterpart],
        anchor_role: Role,
        *,
        merge: bool,
    ) -> RelationshipResult:
        anchor = self.resolver.repository(anchor_role).get_in_tenant(tenant_id, anchor_id)
        if anchor is None or not anchor.is_active:
            raise NotFoundError(f"{anchor_role.display_name} {anchor_id} not found")

        counterpart_role = anchor_role.opposite
        result = RelationshipResult()
        outcome = _Outcome()
        seen: set[str] = set()

        for counterpart in counterparts:
            code = (counterpart.employee_code or "").strip()
            if not code:
                continue
            if code in seen:
                result.duplicate_connections.append(code)
                continue
            seen.add(code)

            supplied_label = (counterpart.label or "").strip()
            label = supplied_label or DEFAULT_LABEL
            if len(label) > RELATIONSHIP_LABEL_MAX:
                result.failed_employee_ids.append(code)
                outcome.bad_label.append(code)
                continue

            try:
                resolved = self.resolver.resolve(tenant_id, code, counterpart_role)
            except NotFoundError:
                result.failed_employee_ids.append(code)
                outcome.not_found.append(code)
                continue

            if anchor_role is Role.SUBJECT:
                subject, evaluator = anchor, resolved.record
            else:
                subject, evaluator = resolved.record, anchor

            if is_self_label(label) and subject.employee_id != evaluator.employee_id:
                result.failed_employee_ids.append(code)
                outcome.self_mismatch.append(code)
                continue

            edge = self.edges.get_pair(tenant_id, subject.id, evaluator.id)
            if edge is None:
                edge = RelationshipEdge(
                    id=uuid4(),
                    tenant_id=tenant_id,
                    subject_id=subject.id,
                    evaluator_id=evaluator.id,
                    label=label,
                    is_active=True,
                )
                self.db.add(edge)
                result.successful_connections += 1
                logger.info("Created edge %s (%s -> %s)", edge.id, subject.id, evaluator.id)
            elif edge.activate():
                if supplied_label and edge.label != label:
                    edge.label = label
                result.successful_connections += 1
                logger.info("Reactivated edge %s", edge.id)
            elif merge and edge.label.casefold() != label.casefold():
                edge.label = label
                result.successful_connections += 1
                outcome.relabelled.append(code)
                logger.info("Relabelled edge %s", edge.id)
            else:
                result.duplicate_connections.append(code)

        flush(self.db)
        result.warnings = self._warnings(result, outcome, counterpart_role, merge=merge)
        return result

    @staticmethod
    def _warnings(result: RelationshipResult, outcome: _Outcome, counterpart_role: Role, *, merge: bool) -> list[str]:
        warnings: list[str] = []
        if outcome.not_found:
            warnings.append(
                f"{counterpart_role.display_name} employee codes not found: {', '.join(outcome.not_found)}"
            )
        if outcome.self_mismatch:
            warnings.append(
                "Self relationships must reference the same employee: " + ", ".join(outcome.self_mismatch)
            )
        if outcome.bad_label:
            warnings.append(
                f"Relationship label longer than {RELATIONSHIP_LABEL_MAX} characters: "
                + ", ".join(outcome.bad_label)
            )
        if outcome.relabelled:
            warnings.append(f"Updated relationship types for: {', '.join(outcome.relabelled)}")
        if result.duplicate_connections:
            prefix = "Skipped unchanged relationships" if merge else "Duplicate connections skipped"
            warnings.append(f"{prefix}: {', '.join(result.duplicate_connections)}")
        return warnings

    # -- remove / list --------------------------------------------------------

    def remove_edge(self, tenant_id: UUID, subject_id: UUID, evaluator_id: UUID) -> RelationshipEdge:
        edge = self.edges.get_pair(tenant_id, subject_id, evaluator_id)
        if edge is None or not edge.is_active:
            raise NotFoundError(f"Relationship {subject_id} - {evaluator_id} not found")
        edge.deactivate()
        flush(self.db)
        return edge

    def list_edges(
        self,
        tenant_id: UUID,
        *,
        subject_id: UUID | None = None,
        evaluator_id: UUID | None = None,
    ) -> list[RelationshipEdge]:
        return self.edges.list_active_for(tenant_id, subject_id=subject_id, evaluator_id=evaluator_id)
