from gallery_media.models.asset import DerivedKind, UnitOutcome


class DerivationError(Exception):
    pass


class ValidationError(DerivationError, ValueError):
    pass


class TransportError(DerivationError):
    pass


class ProcessingError(DerivationError):
    pass


class DerivationTimeout(DerivationError, TimeoutError):
    pass


class AggregateProcessingError(DerivationError):
    """One or more derivation units failed; carries the outcome of every unit."""

    def __init__(self, outcomes: list[UnitOutcome]):
        self.outcomes = outcomes
        super().__init__(f"Derivation failed for units: {', '.join(self.failed_units)}")

    @property
    def failed_units(self) -> list[str]:
        return [o.kind.value for o in self.outcomes if not o.success]

    def outcome_for(self, kind: DerivedKind) -> UnitOutcome | None:
        return next((o for o in self.outcomes if o.kind == kind), None)
