"""Confidence-gated state machine for application status changes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .types import ApplicationStatus, EmailCategory, TransitionDecision, TriggerType

S = ApplicationStatus

DEFAULT_CATEGORY_TARGETS: Mapping[EmailCategory, ApplicationStatus | None] = MappingProxyType(
    {
        EmailCategory.REJECTION: S.REJECTED,
        EmailCategory.INTERVIEW_REQUEST: S.INTERVIEWING,
        EmailCategory.OFFER: S.OFFER,
        EmailCategory.SCREENING_INVITE: S.SCREENING,
        EmailCategory.ASSESSMENT_REQUEST: S.SCREENING,
        EmailCategory.GENERIC_UPDATE: None,
        EmailCategory.UNRELATED: None,
    }
)

DEFAULT_EDGES: Mapping[ApplicationStatus, frozenset[ApplicationStatus]] = MappingProxyType(
    {
        S.SAVED: frozenset({S.APPLIED, S.REJECTED, S.WITHDRAWN}),
        S.APPLIED: frozenset(
            {S.SCREENING, S.INTERVIEWING, S.OFFER, S.REJECTED, S.WITHDRAWN, S.GHOSTED}
        ),
        S.SCREENING: frozenset({S.INTERVIEWING, S.OFFER, S.REJECTED, S.WITHDRAWN, S.GHOSTED}),
        S.INTERVIEWING: frozenset({S.OFFER, S.REJECTED, S.WITHDRAWN, S.GHOSTED}),
        S.OFFER: frozenset({S.ACCEPTED, S.REJECTED, S.WITHDRAWN}),
        S.ACCEPTED: frozenset(),
        S.REJECTED: frozenset(),
        S.WITHDRAWN: frozenset(),
        S.GHOSTED: frozenset({S.SCREENING, S.INTERVIEWING, S.REJECTED}),
    }
)

REVIEW_THRESHOLD = 0.7
AUTO_THRESHOLD = 0.9


@dataclass(frozen=True)
class TransitionTable:
    """Static lookup data driving :class:`TransitionEngine`."""

    category_targets: Mapping[EmailCategory, ApplicationStatus | None] = field(
        default_factory=lambda: DEFAULT_CATEGORY_TARGETS
    )
    edges: Mapping[ApplicationStatus, frozenset[ApplicationStatus]] = field(
        default_factory=lambda: DEFAULT_EDGES
    )
    review_threshold: float = REVIEW_THRESHOLD
    auto_threshold: float = AUTO_THRESHOLD

    def __post_init__(self) -> None:
        if not 0.0 <= self.review_threshold <= self.auto_threshold <= 1.0:
            raise ValueError("Thresholds must satisfy 0 <= review <= auto <= 1.")
        object.__setattr__(self, "category_targets", MappingProxyType(dict(self.category_targets)))
        object.__setattr__(
            self,
            "edges",
            MappingProxyType({status: frozenset(dsts) for status, dsts in self.edges.items()}),
        )

    def target_for(self, category: EmailCategory) -> ApplicationStatus | None:
        return self.category_targets.get(category)

    def allowed(self, current: ApplicationStatus) -> frozenset[ApplicationStatus]:
        return self.edges.get(current, frozenset())


DEFAULT_TABLE = TransitionTable()


class TransitionEngine:
    """Decide whether a classified email should move an application."""

    def __init__(self, table: TransitionTable = DEFAULT_TABLE) -> None:
        self._table = table

    @property
    def table(self) -> TransitionTable:
        return self._table

    def decide(
        self,
        category: EmailCategory,
        confidence: float,
        current_status: ApplicationStatus,
    ) -> TransitionDecision:
        target = self._table.target_for(category)
        if target is None:
            return TransitionDecision(
                should_update=False,
                target_status=None,
                needs_review=False,
                reason=f"Classification {category.value} does not trigger a status change",
            )

        if not self.can_transition(current_status, target):
            return TransitionDecision(
                should_update=False,
                target_status=None,
                needs_review=True,
                reason=f"Invalid transition from {current_status.value} to {target.value}",
            )

        if confidence < self._table.review_threshold:
            return TransitionDecision(
                should_update=False,
                target_status=target,
                needs_review=True,
                reason=f"Confidence {confidence:.2f} below threshold",
            )

        if confidence < self._table.auto_threshold:
            return TransitionDecision(
                should_update=True,
                target_status=target,
                needs_review=True,
                reason=f"Updating to {target.value} pending review (confidence {confidence:.2f})",
            )

        return TransitionDecision(
            should_update=True,
            target_status=target,
            needs_review=False,
            reason=f"Auto-updating to {target.value} (confidence {confidence:.2f})",
        )

    def can_transition(self, source: ApplicationStatus, target: ApplicationStatus) -> bool:
        return target in self._table.allowed(source)

    def is_terminal(self, status: ApplicationStatus) -> bool:
        return not self._table.allowed(status)

    def active_statuses(self) -> tuple[ApplicationStatus, ...]:
        """Statuses that still have outgoing edges, in declaration order."""

        return tuple(status for status in ApplicationStatus if not self.is_terminal(status))

    @staticmethod
    def trigger_type(decision: TransitionDecision) -> TriggerType:
        if decision.needs_review:
            return TriggerType.EMAIL_AUTO_REVIEW
        return TriggerType.EMAIL_AUTO


__all__ = [
    "AUTO_THRESHOLD",
    "DEFAULT_CATEGORY_TARGETS",
    "DEFAULT_EDGES",
    "DEFAULT_TABLE",
    "REVIEW_THRESHOLD",
    "TransitionEngine",
    "TransitionTable",
]
