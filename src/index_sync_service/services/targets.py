"""Resolution of per-locale indexing targets."""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import orjson
import structlog
from pydantic import BaseModel, Field, ValidationError

from index_sync_service.errors import ConfigurationError
from shared.constants import INDEX_NAME_TEMPLATE, MISSING_INDEXING_CONFIG_MESSAGE

logger = structlog.get_logger()


class TargetKind(str, Enum):
    """Which API a target is addressed through."""

    INDEX = "index"
    TASK = "task"


@dataclass(frozen=True)
class IndexTarget:
    """Destination of one locale's batches: an index name or an ingestion task ID."""

    kind: TargetKind
    name: str


# =============================================================================
# Indexing configuration document
# =============================================================================


class TaskConfig(BaseModel):
    replace: str | None = None


class ProductsConfig(BaseModel):
    tasks: TaskConfig = Field(default_factory=TaskConfig)


class LocaleConfig(BaseModel):
    products: ProductsConfig = Field(default_factory=ProductsConfig)


class IndexingConfig(BaseModel):
    """Locale to ingestion task mapping, stored as a JSON preference."""

    locales: dict[str, LocaleConfig] = Field(default_factory=dict)

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "IndexingConfig":
        """Parse the JSON preference, raising ConfigurationError if unusable."""
        if not raw:
            raise ConfigurationError(MISSING_INDEXING_CONFIG_MESSAGE)
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid Indexing configuration: {e}") from e
        if not data:
            raise ConfigurationError(MISSING_INDEXING_CONFIG_MESSAGE)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid Indexing configuration: {e}") from e

    def replace_task_id(self, locale: str) -> str | None:
        locale_config = self.locales.get(locale)
        if locale_config is None:
            return None
        return locale_config.products.tasks.replace


# =============================================================================
# Resolvers
# =============================================================================


class TargetResolver(Protocol):
    def resolve(self, locale: str) -> IndexTarget: ...


class IndexNameResolver:
    """Routes every locale to its own search index."""

    def __init__(self, index_prefix: str):
        self.index_prefix = index_prefix

    def resolve(self, locale: str) -> IndexTarget:
        name = INDEX_NAME_TEMPLATE.format(prefix=self.index_prefix, locale=locale)
        return IndexTarget(kind=TargetKind.INDEX, name=name)


class TaskResolver:
    """Routes locales to the ingestion task registered for them."""

    def __init__(self, config: IndexingConfig):
        self.config = config

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "TaskResolver":
        return cls(IndexingConfig.from_json(raw))

    def resolve(self, locale: str) -> IndexTarget:
        task_id = self.config.replace_task_id(locale)
        if not task_id:
            raise ConfigurationError(
                f'Locale "{locale}" is not registered on the Ingestion platform.',
                locale=locale,
            )
        return IndexTarget(kind=TargetKind.TASK, name=task_id)


def resolve_targets(
    resolver: TargetResolver,
    locales: list[str],
    skip_unresolved: bool = True,
) -> dict[str, IndexTarget]:
    """
    Resolve a target for each locale, preserving locale order.

    Args:
        resolver: Target resolver to use
        locales: Locales to resolve
        skip_unresolved: Log and skip locales without a target instead of raising

    Raises:
        ConfigurationError: If a locale cannot be resolved and skipping is off,
            or if no locale could be resolved at all
    """
    targets: dict[str, IndexTarget] = {}
    for locale in locales:
        try:
            targets[locale] = resolver.resolve(locale)
        except ConfigurationError as e:
            if not skip_unresolved:
                raise
            logger.error("Skipping locale", locale=locale, error=e.message)

    if not targets:
        raise ConfigurationError(
            f"No indexing target configured for locales: {', '.join(locales) or 'none'}"
        )
    return targets
