class DomainError(Exception):
    code = "E_DOMAIN"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)


class InvalidInputError(DomainError):
    code = "E_INVALID_INPUT"


class NotFoundError(DomainError):
    code = "E_NOT_FOUND"


class AlreadyProcessedError(DomainError):
    code = "E_ALREADY_PROCESSED"

    def __init__(self, status: str) -> None:
        super().__init__(f"Request already processed ({status})")
        self.status = status


class DailyLimitError(DomainError):
    code = "LIMIT_REACHED"


class StorageUnavailableError(DomainError):
    code = "E_STORAGE_UNAVAILABLE"


class BankLookupError(DomainError):
    code = "E_BANK_LOOKUP"

    def __init__(self, message: str = "", bank_code: str | None = None) -> None:
        super().__init__(message)
        self.bank_code = bank_code
