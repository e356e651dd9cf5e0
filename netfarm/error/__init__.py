from .base import BaseError


class SamplingError(BaseError):
    """
    Errors reading network interface counters.
    """


class SamplingUnavailableError(SamplingError):

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Network interface counters are unavailable: {reason}")


class LedgerError(BaseError):
    """
    Errors reading or updating the points ledger.
    """


class UnknownSubjectError(LedgerError):

    def __init__(self, subject):
        self.subject = subject
        super().__init__(f"Subject '{subject}' is not registered in the ledger.")


class LedgerUnavailableError(LedgerError):

    def __init__(self, reason):
        self.reason = reason
        super().__init__(f"Ledger is unavailable: {reason}")


class LedgerTimeoutError(LedgerUnavailableError):

    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"operation did not complete within {timeout} seconds")


class TransactionAbandonedError(LedgerUnavailableError):

    def __init__(self):
        super().__init__("transaction was abandoned by its caller and rolled back")


class ConfigurationError(BaseError):
    """
    Configuration errors.
    """


class ConfigurationMissingError(ConfigurationError):

    def __init__(self, setting):
        self.setting = setting
        super().__init__(f"Required setting '{setting}' is missing.")


class ConfigurationInvalidError(ConfigurationError):

    def __init__(self, setting, message):
        self.setting = setting
        super().__init__(f"Setting '{setting}' is invalid: {message}")
