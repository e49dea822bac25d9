"""Exceptions raised by the prize allocation engine.

Only whole-request failures are exceptions. A competitor failing a
category or an institution unable to field a team is a normal result.
"""


class PrizeAllocatorError(Exception):
    """Base class for all engine errors."""


class InputError(PrizeAllocatorError):
    """The request cannot run: missing tournament, unreadable roster or config."""


class ConfigError(PrizeAllocatorError):
    """A configuration value is malformed or violates an edit-time rule."""
