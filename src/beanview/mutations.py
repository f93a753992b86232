"""Drag/drop evaluation: gestures in, advisory mutation intents out.

``MutationValidator.evaluate_drop`` is pure. It returns one of

- a ``ReparentIntent`` / ``StatusChangeIntent`` to hand to the store,
- a ``ValidationError`` to show the user,
- a ``NeedsConfirmation`` carrying the choices the user must pick from.

Nothing here touches a store; applying an intent is the caller's job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Union

from .errors import DragStateError
from .model import BeanRecord, allowed_parent_types, can_parent
from .panes import PaneSpec
from .store import UpdatePatch

logger = logging.getLogger(__name__)


class ValidationKind(str, Enum):
    SELF_PARENT = "self_parent"
    CYCLE_DETECTED = "cycle_detected"
    INVALID_HIERARCHY = "invalid_hierarchy"


@dataclass(frozen=True)
class ValidationError:
    kind: ValidationKind
    message: str
    bean_id: str
    target_id: str | None = None


@dataclass(frozen=True)
class ReparentIntent:
    bean_id: str
    new_parent_id: str | None


@dataclass(frozen=True)
class StatusChangeIntent:
    bean_id: str
    new_status: str
    new_parent_id: str | None = None


MutationIntent = Union[ReparentIntent, StatusChangeIntent]


class DropChoice(str, Enum):
    STATUS_ONLY = "status"
    STATUS_AND_REPARENT = "reparent"
    CANCEL = "cancel"


class DropKind(str, Enum):
    INTRA_PANE = "intra_pane"
    CROSS_PANE = "cross_pane"


@dataclass(frozen=True)
class NeedsConfirmation:
    bean_id: str
    target_id: str | None
    pane: PaneSpec
    new_status: str
    choices: tuple[DropChoice, ...]
    message: str


DropResult = Union[ReparentIntent, StatusChangeIntent, ValidationError, NeedsConfirmation]


class MutationValidator:
    """Evaluates drops against an id -> record lookup of the current snapshots."""

    def __init__(self, lookup: Mapping[str, BeanRecord]) -> None:
        self._lookup = lookup

    def _record(self, bean_id: str) -> BeanRecord:
        record = self._lookup.get(bean_id)
        if record is None:
            raise ValueError(f"unknown bean: {bean_id}")
        return record

    def classify(self, dragged: BeanRecord, pane: PaneSpec) -> DropKind:
        if pane.is_native(dragged.status):
            return DropKind.INTRA_PANE
        return DropKind.CROSS_PANE

    def is_descendant(self, bean_id: str, ancestor_id: str) -> bool:
        """True if ``ancestor_id`` appears in ``bean_id``'s parent chain.

        The walk is bounded by the lookup size so corrupted parent data that
        loops cannot hang the caller.
        """
        seen: set[str] = set()
        current = self._lookup.get(bean_id)
        bound = len(self._lookup) + 1
        while current is not None and current.parent_id and len(seen) < bound:
            if current.parent_id == ancestor_id:
                return True
            if current.parent_id in seen:
                return False
            seen.add(current.parent_id)
            current = self._lookup.get(current.parent_id)
        return False

    def validate_reparent(
        self, dragged: BeanRecord, target: BeanRecord
    ) -> ValidationError | None:
        if dragged.id == target.id:
            return ValidationError(
                ValidationKind.SELF_PARENT,
                "Cannot make a bean its own parent",
                dragged.id,
                target.id,
            )
        if not can_parent(target.type, dragged.type):
            allowed = allowed_parent_types(dragged.type)
            hint = (
                f" Allowed parent types: {', '.join(allowed)}."
                if allowed
                else f" A {dragged.type} cannot have a parent."
            )
            return ValidationError(
                ValidationKind.INVALID_HIERARCHY,
                f"A {dragged.type} cannot have a {target.type} as parent.{hint}",
                dragged.id,
                target.id,
            )
        if self.is_descendant(target.id, dragged.id):
            return ValidationError(
                ValidationKind.CYCLE_DETECTED,
                f"Cannot create cycle: {target.code} is a descendant of {dragged.code}",
                dragged.id,
                target.id,
            )
        return None

    def evaluate_drop(
        self,
        dragged_id: str,
        target_id: str | None,
        pane: PaneSpec,
    ) -> DropResult:
        dragged = self._record(dragged_id)
        target = self._record(target_id) if target_id is not None else None

        if self.classify(dragged, pane) is DropKind.INTRA_PANE:
            if target is None:
                return ReparentIntent(dragged.id, None)
            error = self.validate_reparent(dragged, target)
            if error is not None:
                logger.debug("drop rejected: %s", error.message)
                return error
            return ReparentIntent(dragged.id, target.id)

        new_status = pane.target_status
        if new_status is None:
            raise ValueError(f"pane {pane.name} does not accept cross-pane drops")

        if target is None:
            return NeedsConfirmation(
                bean_id=dragged.id,
                target_id=None,
                pane=pane,
                new_status=new_status,
                choices=(DropChoice.STATUS_ONLY, DropChoice.CANCEL),
                message=f"Change {dragged.display_name} to {new_status}?",
            )
        return NeedsConfirmation(
            bean_id=dragged.id,
            target_id=target.id,
            pane=pane,
            new_status=new_status,
            choices=(
                DropChoice.STATUS_ONLY,
                DropChoice.STATUS_AND_REPARENT,
                DropChoice.CANCEL,
            ),
            message=(
                f"Change {dragged.display_name} to {new_status}, "
                f"optionally moving it under {target.display_name}?"
            ),
        )

    def resolve(
        self,
        confirmation: NeedsConfirmation,
        choice: DropChoice | str,
    ) -> MutationIntent | ValidationError | None:
        """Turn the user's answer into an intent. Cancel yields None."""
        picked = DropChoice(choice)
        if picked not in confirmation.choices:
            raise ValueError(f"choice {picked.value!r} is not offered for this drop")
        if picked is DropChoice.CANCEL:
            return None
        if picked is DropChoice.STATUS_ONLY:
            return StatusChangeIntent(confirmation.bean_id, confirmation.new_status)

        assert confirmation.target_id is not None
        dragged = self._record(confirmation.bean_id)
        target = self._record(confirmation.target_id)
        error = self.validate_reparent(dragged, target)
        if error is not None:
            return error
        return StatusChangeIntent(dragged.id, confirmation.new_status, target.id)


def intent_to_patch(intent: MutationIntent, *, if_match: str | None = None) -> UpdatePatch:
    if isinstance(intent, ReparentIntent):
        if intent.new_parent_id is None:
            return UpdatePatch(clear_parent=True, if_match=if_match)
        return UpdatePatch(parent_id=intent.new_parent_id, if_match=if_match)
    return UpdatePatch(
        status=intent.new_status,
        parent_id=intent.new_parent_id,
        if_match=if_match,
    )


# ---------------------------------------------------------------------------
# Gesture state machine
# ---------------------------------------------------------------------------


class DragState(str, Enum):
    IDLE = "idle"
    DRAG_STARTED = "drag_started"
    DROP_EVALUATED = "drop_evaluated"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class DragSession:
    """Idle -> DragStarted -> DropEvaluated -> {Confirmed, Cancelled} -> Idle."""

    def __init__(self, validator: MutationValidator) -> None:
        self.validator = validator
        self.state = DragState.IDLE
        self.dragged_id: str | None = None
        self.result: DropResult | None = None
        self.outcome: MutationIntent | ValidationError | None = None

    def _require(self, *states: DragState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise DragStateError(f"drag session is {self.state.value}; expected {allowed}")

    def start(self, dragged_id: str) -> None:
        self._require(DragState.IDLE, DragState.CONFIRMED, DragState.CANCELLED)
        self.dragged_id = dragged_id
        self.result = None
        self.outcome = None
        self.state = DragState.DRAG_STARTED

    def drop(self, target_id: str | None, pane: PaneSpec) -> DropResult:
        self._require(DragState.DRAG_STARTED)
        assert self.dragged_id is not None
        self.result = self.validator.evaluate_drop(self.dragged_id, target_id, pane)
        self.state = DragState.DROP_EVALUATED
        if isinstance(self.result, ValidationError):
            self.outcome = self.result
            self.state = DragState.CANCELLED
        return self.result

    def confirm(
        self, choice: DropChoice | str = DropChoice.STATUS_ONLY
    ) -> MutationIntent | ValidationError | None:
        self._require(DragState.DROP_EVALUATED)
        result = self.result
        if isinstance(result, NeedsConfirmation):
            outcome = self.validator.resolve(result, choice)
        else:
            outcome = result  # type: ignore[assignment]
        self.outcome = outcome
        if outcome is None or isinstance(outcome, ValidationError):
            self.state = DragState.CANCELLED
        else:
            self.state = DragState.CONFIRMED
        return outcome

    def cancel(self) -> None:
        self._require(DragState.DRAG_STARTED, DragState.DROP_EVALUATED)
        self.outcome = None
        self.state = DragState.CANCELLED

    def finish(self) -> MutationIntent | ValidationError | None:
        self._require(DragState.CONFIRMED, DragState.CANCELLED)
        outcome = self.outcome
        self.state = DragState.IDLE
        self.dragged_id = None
        self.result = None
        self.outcome = None
        return outcome
