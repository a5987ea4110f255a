"""
Error taxonomy for the lifecycle engine.

Refusals are NOT bugs - they are the engine working correctly. They are
raised synchronously to the immediate caller and never retried internally.
"""
from typing import Optional


class GatherError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class RefusalError(GatherError):
    """An action was refused because it would break a lifecycle rule."""


class IllegalTransitionError(RefusalError):
    """Requested lifecycle move is not in the status graph."""

    def __init__(self, from_status, to_status, message: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Invalid transition from {_label(from_status)} to {_label(to_status)}"
        )


class FreezeNotReadyError(IllegalTransitionError):
    """CONFIRMING → FROZEN refused because items still lack a usable assignment."""

    def __init__(self, from_status, to_status, gap_count: int):
        self.gap_count = gap_count
        super().__init__(
            from_status,
            to_status,
            f"Cannot freeze: {gap_count} item(s) still need an assignment",
        )


class MissingOverrideReasonError(RefusalError):
    """Unfreeze attempted without a human-supplied reason."""

    def __init__(self):
        super().__init__("A reason is required to unfreeze the event")


class MutationNotPermittedError(RefusalError):
    """The mutation gate denied the action for the current stage."""

    def __init__(self, stage, action, message: Optional[str] = None):
        self.stage = stage
        self.action = action
        super().__init__(
            message or f"Cannot {_label(action)} while event is {_label(stage)}"
        )


class AcknowledgementValidationError(RefusalError):
    """An acknowledgement broke one of the ledger's input rules."""

    def __init__(self, rule: str, message: str, hint: Optional[str] = None):
        self.rule = rule
        self.hint = hint
        super().__init__(message)


class ValidationError(RefusalError):
    """Request is well-formed but refers to something that cannot be used."""


class NotFoundError(GatherError):
    """Entity does not exist (or is outside the caller's event)."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConsistencyRepairError(GatherError):
    """Derived status could not be repaired; the whole transaction is aborted."""


class StaleEventError(GatherError):
    """The event changed underneath this transaction. Re-check the gate before retrying."""


class ImmutableRecordError(GatherError):
    """Code tried to modify or delete an append-only record."""


def _label(value) -> str:
    return getattr(value, "value", value)
