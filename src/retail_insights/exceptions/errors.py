class RetailInsightsError(Exception):
    """Base exception for retail_insights."""

class ConfigError(RetailInsightsError):
    pass

class DatasetUnavailableError(RetailInsightsError):
    """The dataset is missing or unreadable. Aborts the whole report."""

DataNotFoundError = DatasetUnavailableError

class InvalidQueryError(RetailInsightsError):
    """A query definition cannot be compiled. Fatal for that section only."""

class SchemaMismatchError(InvalidQueryError):
    """A query references an attribute the dataset does not have."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])

class QueryExecutionError(RetailInsightsError):
    pass

class CatalogError(RetailInsightsError):
    pass

class ExportError(RetailInsightsError):
    pass
