"""Pipeline errors — every one of these aborts the remaining run.

There is no rollback: whatever was confirmed on-chain before the failure
stays, and the operator resumes by hand from the last completed step.
"""


class PipelineError(Exception):
    """Base class for unrecoverable run failures."""


class ConfigurationMissing(PipelineError):
    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__(f"Missing required configuration: {', '.join(self.names)}")


class EstimationUnavailable(PipelineError):
    def __init__(self, market: str, action: str, amount: int):
        self.market = market
        self.action = action
        self.amount = amount
        super().__init__(
            f"No {action} estimate available for amount={amount} on market {market}"
        )


class LookupTableUnavailable(PipelineError):
    def __init__(self, address: str, attempts: int):
        self.address = address
        self.attempts = attempts
        super().__init__(
            f"Lookup table {address} not readable after {attempts} attempts"
        )


class SubmissionRejected(PipelineError):
    def __init__(self, label: str, reference: str = "", detail: str = ""):
        self.label = label
        self.reference = reference
        self.detail = detail
        msg = f"Submission '{label}' rejected"
        if reference:
            msg += f" (ref={reference})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class TransactionTooLarge(PipelineError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Tx too large: {size} bytes (max {limit})")
