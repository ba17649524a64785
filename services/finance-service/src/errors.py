"""Error taxonomy shared by the ledger, receipt, and advice flows."""


class FinanceServiceError(Exception):
    """Base class for errors the finance service reports to callers."""


class ValidationError(FinanceServiceError):
    """User input was rejected before any external call was made."""


class NoDataError(FinanceServiceError):
    """Advice was requested for an empty ledger."""


class UpstreamError(FinanceServiceError):
    """The LLM gateway failed, returned a malformed envelope, or lacks credentials."""


class AdviceGenerationError(UpstreamError):
    """An advice request to the LLM gateway failed."""


class ReceiptExtractionError(UpstreamError):
    """A receipt OCR request to the LLM gateway failed."""


class ParseError(FinanceServiceError):
    """Receipt extraction text was not a JSON object."""
