"""Custom exception hierarchy for evoforge."""


class EvoforgeError(Exception):
    """Base for all evoforge errors."""


class ConfigurationError(EvoforgeError):
    """Run parameters are out of range. The run is never created."""


class OperatorError(EvoforgeError):
    """A genetic operator produced or received an unusable genome."""


class IncompatibleGenomeError(OperatorError):
    """Crossover parents belong to different genome families or shapes."""


class MalformedGenomeError(OperatorError):
    """An operator changed the structural shape of a genome."""


class EvaluationError(EvoforgeError):
    """A single fitness evaluation failed or timed out."""


class EvaluatorOutageError(EvoforgeError):
    """Every evaluation in a batch failed."""


class InvariantViolation(EvoforgeError):
    """An engine invariant was broken. Always a programming error."""


class PopulationSizeInvariantViolation(InvariantViolation):
    """A generational transition changed the population size."""


class RunNotFoundError(EvoforgeError):
    """No run with the given ID exists."""


class RunStateError(EvoforgeError):
    """Invalid run state transition or operation for the current state."""
