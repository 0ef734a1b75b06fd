"""Exceptions that are raised by the `compwa` core.

None of these errors are recovered from internally. They indicate a programming or
configuration defect and are surfaced to the caller as they are.
"""


class ConfigurationError(ValueError):
    """Invalid decay topology, particle definition, or configuration content.

    Raised at construction time, never at use time.
    """


class DomainError(ValueError):
    """Input lies outside the domain of a kinematic operation.

    Examples are an event with the wrong number of particles or a four-vector that
    has no rest frame.
    """


class ShapeError(ValueError):
    """Sequence or array lengths do not match, for instance a parameter vector."""


class ExhaustedSourceError(RuntimeError):
    """A finite sample of candidate events ran out before generation completed."""


class InvariantViolation(RuntimeError):  # noqa: N818
    """An intensity produced negative or non-finite values."""
