# -*- encoding: utf-8 -*-


class InvalidRequestError(ValueError):
    """A projection request is malformed or contradicts the data

    This is raised before any accumulation starts, and it aborts the whole
    call to :func:`.project`."""


class UnknownUnitError(InvalidRequestError, KeyError):
    """The name of a unit is not present in the unit-scale table"""

    def __str__(self):
        # KeyError.__str__ would print the message within quotes
        return Exception.__str__(self)


class DerivedVariableError(Exception):
    """A derived quantity cannot be computed for the records at hand

    Unlike :class:`.InvalidRequestError`, this error only affects the variable
    that raised it: it is stored in the field ``errors`` of :class:`.MapResult`
    and the other variables in the same request are computed normally."""

    def __init__(self, variable: str, reason: str):
        super().__init__(f'cannot compute "{variable}": {reason}')
        self.variable = variable
        self.reason = reason


class RemapAlignmentError(ValueError):
    """The target of a coarse remap is not a power-of-two sub-multiple of the
    source map, or the source window does not align with coarse pixels"""


class EmptyResultWarning(UserWarning):
    """No record contributed to a map, which is therefore all-sentinel"""
