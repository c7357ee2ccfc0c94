"""Custom exception hierarchy for price-cache."""

from typing import Any


class PriceCacheError(Exception):
    """Base exception for all price-cache errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PriceCacheError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field (str): the config field that failed validation
        value (Any): the invalid value (redacted for secrets)
    """


class CatalogError(ConfigError):
    """The asset catalog could not be loaded.

    Policy: fatal. No catalog, no service.

    Context keys:
        path (str): the catalog file that was being read
        symbol (str | None): the offending record, if any
    """


class FetchError(PriceCacheError):
    """Market data provider call failed (transport, timeout, or status).

    Policy: in batch jobs, log and skip the symbol. Do not abort the batch.
    On the read path, fall back to cached data if any exists.

    Context keys:
        symbol (str): the symbol that was being fetched
        status_code (int | None): HTTP status if a response was received
    """


class NoDataAvailable(PriceCacheError):
    """No cached data and the provider could not supply any.

    Policy: surface to the caller. Never answer with an empty series.

    Context keys:
        symbol (str): the symbol that was requested
    """


class StorageError(PriceCacheError):
    """Snapshot read or write failed.

    Policy: in-memory state stays authoritative. Callers log and report.

    Context keys:
        operation (str): "persist", "read_raw", etc.
        path (str): the snapshot path
    """


class JobAlreadyRunning(PriceCacheError):
    """A refresh job of the same name is already in progress.

    Policy: reject the trigger. The running job is left untouched.

    Context keys:
        job (str): "incremental" or "full"
    """
