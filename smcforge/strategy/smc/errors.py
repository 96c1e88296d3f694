"""
Error taxonomy for the SMC engine.

Only malformed input is an error. "No actionable setup" is a normal outcome
(a None plan), and rejections inside validation / setup calculation are
control flow reported through SetupOutcome + reason codes, never raised.
"""


class SMCError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(SMCError, ValueError):
    """Malformed candles, unknown levers, or an untrusted plan that fails schema checks."""


class InsufficientDataError(SMCError):
    """
    Raised by SMCStrategy.analyze() when a required timeframe is missing or
    too short to analyse. Individual recognizers never raise this: they
    return empty results for short windows.
    """
