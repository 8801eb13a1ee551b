"""
Errors raised while scanning and aggregating Jupiter Perps accounts.

Every error carries the scan stage that failed so the CLI can report it.
Nothing in the pipeline retries or recovers; the first error aborts the run.
"""


class PerpsAnalyticsError(Exception):
    """Base class for all scan failures."""

    stage = "scan"

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class TransportError(PerpsAnalyticsError):
    """The RPC endpoint could not be reached or returned an error."""

    stage = "fetch"


class DecodeError(PerpsAnalyticsError):
    """Account bytes do not match the expected discriminator or layout."""

    stage = "decode"


class OracleUnavailable(PerpsAnalyticsError):
    """No usable price could be read from an oracle account."""

    stage = "oracle"


class MissingRelation(PerpsAnalyticsError):
    """A record references an address that is absent from this scan."""

    stage = "relation"


class UnknownMint(MissingRelation):
    """A position's mint has no resolved price."""


class DivisionUndefined(PerpsAnalyticsError):
    """A ratio was requested with a zero denominator."""

    stage = "derive"


class InsufficientLiquidityData(DivisionUndefined):
    """Utilization cannot be derived because owned assets are zero."""
