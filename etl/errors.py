class IngestionError(Exception):
    """Base class for errors that abort an ingestion call as a whole."""


class EmptyFeedError(IngestionError):
    def __init__(self, message="CSV must have a header row and at least one data row"):
        super().__init__(message)


class CsvHeaderError(IngestionError):
    def __init__(self, missing_columns, provider=None):
        self.missing_columns = list(missing_columns)
        self.provider = provider
        super().__init__(f"Missing required columns: {', '.join(self.missing_columns)}")


class PayloadFormatError(IngestionError):
    pass


class ManualEntryError(ValueError):
    """Admin form data failed validation; carries the per-field messages."""

    def __init__(self, errors):
        self.errors = dict(errors)
        super().__init__('; '.join(f"{k}: {v}" for k, v in self.errors.items()))


# Provider failure classes; each provider run reports exactly one outcome.
TIMEOUT = 'timeout'
NETWORK_ERROR = 'network_error'
HTTP_ERROR = 'http_error'
PARSE_ERROR = 'parse_error'
CONFIG_MISSING = 'config_missing'
UNKNOWN = 'unknown'


class ProviderError(IngestionError):
    def __init__(self, error_type, message, provider_id=None, http_status=None):
        self.error_type = error_type
        self.provider_id = provider_id
        self.http_status = http_status
        super().__init__(message)
