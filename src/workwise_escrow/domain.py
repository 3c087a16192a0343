"""Closed enumerations and the project transition table."""

from __future__ import annotations

from enum import Enum


class ProjectStatus(Enum):
    """Lifecycle status of a project."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class TransactionType(Enum):
    ESCROW = "escrow"
    RELEASE = "release"
    REFUND = "refund"


class TransactionStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DepositStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BalanceKind(Enum):
    """Which of an account's two balances an operation touches."""

    ESCROW = "escrow_balance"
    EARNINGS = "earnings_balance"


class AdjustResult(Enum):
    """Outcome of a conditional balance adjustment."""

    SUCCESS = "success"
    CONFLICT = "conflict"


TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.OPEN: frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.CANCELLED}),
    ProjectStatus.IN_PROGRESS: frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED}),
    ProjectStatus.COMPLETED: frozenset(
        {
            ProjectStatus.APPROVED,
            ProjectStatus.IN_PROGRESS,
            ProjectStatus.DISPUTED,
            ProjectStatus.CANCELLED,
        }
    ),
    ProjectStatus.DISPUTED: frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.CANCELLED}),
    ProjectStatus.APPROVED: frozenset(),
    ProjectStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)


def can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    """Return True if the transition table allows current -> target."""
    return target in TRANSITIONS[current]


def allowed_sources(target: ProjectStatus) -> frozenset[ProjectStatus]:
    """All statuses from which target is reachable in one step."""
    return frozenset(source for source, targets in TRANSITIONS.items() if target in targets)
