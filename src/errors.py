"""Error taxonomy for the top-up bot.

Only ConfigurationError is fatal to the process. Everything else is caught at
the top of a cycle, reported, and left to the next scheduled run.
"""


class TopUpError(Exception):
    pass


class ConfigurationError(TopUpError):
    """Invalid or missing setting. Raised before any network client exists."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors) if errors else "Invalid configuration")


class QueryError(TopUpError):
    """A balance or state read failed (RPC, CU or gateway)."""


class QuoteUnavailable(TopUpError):
    """No route or liquidity for the requested swap."""


class InsufficientFunds(TopUpError):
    def __init__(self, message: str, *, have=None, need=None) -> None:
        self.have = have
        self.need = need
        super().__init__(message)


class SubmissionError(TopUpError):
    """A trade, burn or transfer failed to submit, confirm, or reverted."""

    def __init__(self, message: str, *, tx_id: str | None = None) -> None:
        self.tx_id = tx_id
        super().__init__(message)


class StrandedFundsError(SubmissionError):
    """Burn failed after the swap succeeded: ARIO is left on the source chain."""
