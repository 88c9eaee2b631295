"""Shared constants across the application."""

# Persisted run log key
RUN_LOG_NAME = "LastProductSyncLog"

# Batch sizes
DEFAULT_CHUNK_SIZE = 500
FULL_SCAN_BATCH_SIZE = 500

# Wire format
OBJECT_ID_FIELD = "objectID"
DEFAULT_IDENTIFIER_FIELD = "id"
INDEX_NAME_TEMPLATE = "{prefix}__products__{locale}"

# Run log messages
GENERIC_RUN_ERROR_MESSAGE = (
    "An error occurred during the job. Please see the error log for more details."
)
MISSING_INDEXING_CONFIG_MESSAGE = "Missing Indexing configuration"
INDEXING_DISABLED_MESSAGE = "Search indexing is disabled"
