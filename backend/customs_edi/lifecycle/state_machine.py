"""Declaration status transitions and the lock rule.

A declaration is read-only when its ``locked`` flag is set or when its status
is one of LOCKED_STATES, whichever holds.
"""

from customs_edi.exceptions import AlreadyLockedError, DocumentLockedError, InvalidTransitionError
from customs_edi.models.declaration import Declaration, DeclarationStatus

S = DeclarationStatus

LOCKED_STATES = frozenset({
    S.SENT_TO_BROKER,
    S.AUTHORITY_ACCEPTED,
    S.CLEARANCE_ISSUED,
    S.COMPLETED,
})

ALLOWED_TRANSITIONS: dict[DeclarationStatus, frozenset[DeclarationStatus]] = {
    S.DRAFT: frozenset({S.SUBMITTED}),
    S.SUBMITTED: frozenset({S.SENT_TO_BROKER}),
    S.SENT_TO_BROKER: frozenset({S.AUTHORITY_ACCEPTED, S.AUTHORITY_REJECTED}),
    S.AUTHORITY_ACCEPTED: frozenset({S.CLEARANCE_ISSUED, S.COMPLETED}),
    S.AUTHORITY_REJECTED: frozenset(),
    S.CLEARANCE_ISSUED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
}

# Status a lock() call advances to, by current status
LOCK_TARGETS: dict[DeclarationStatus, DeclarationStatus] = {
    S.SUBMITTED: S.SENT_TO_BROKER,
    S.AUTHORITY_ACCEPTED: S.COMPLETED,
    S.CLEARANCE_ISSUED: S.COMPLETED,
}

EDITABLE_STATES = frozenset({S.DRAFT})
XML_GENERATION_STATES = frozenset({S.DRAFT, S.SUBMITTED})


def is_locked(declaration: Declaration) -> bool:
    return bool(declaration.locked) or DeclarationStatus(declaration.status) in LOCKED_STATES


def can_transition(current: DeclarationStatus, target: DeclarationStatus) -> bool:
    return DeclarationStatus(target) in ALLOWED_TRANSITIONS[DeclarationStatus(current)]


def ensure_transition(current: DeclarationStatus, target: DeclarationStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(DeclarationStatus(current).value, DeclarationStatus(target).value)


def ensure_unlocked(declaration: Declaration, action: str) -> None:
    if is_locked(declaration):
        raise DocumentLockedError(declaration.id, action)


def ensure_editable(declaration: Declaration, action: str) -> None:
    """Header, item and delete mutations: not locked and still a draft."""
    ensure_unlocked(declaration, action)
    if DeclarationStatus(declaration.status) not in EDITABLE_STATES:
        raise InvalidTransitionError(
            DeclarationStatus(declaration.status).value,
            reason=f"Cannot {action}: only DRAFT declarations can be modified",
        )


def lock_target(declaration: Declaration) -> DeclarationStatus:
    """Status a lock() call moves the declaration to.

    Locking a declaration whose lock flag is already set is refused rather
    than ignored.
    """
    if declaration.locked:
        raise AlreadyLockedError(declaration.id)
    current = DeclarationStatus(declaration.status)
    target = LOCK_TARGETS.get(current)
    if target is None:
        raise InvalidTransitionError(current.value, reason=f"A {current.value} declaration cannot be locked")
    return target
