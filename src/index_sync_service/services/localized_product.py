"""Localized product documents for the search index."""

from typing import Any, Protocol

from index_sync_service.services.catalog import ProductRecord
from index_sync_service.services.operations import LocalizedDocument


class DocumentTransformer(Protocol):
    def transform(self, record: ProductRecord, locale: str) -> LocalizedDocument: ...


def is_included(record: ProductRecord) -> bool:
    """Whether a product belongs in the search index at all."""
    return record.is_active and bool(record.name) and record.price_cents is not None


class LocalizedProductTransformer:
    """Renders a product for one locale.

    Translated fields are looked up for the exact locale first (``fr_FR``),
    then its language (``fr``), then fall back to the catalog default.
    """

    def transform(self, record: ProductRecord, locale: str) -> LocalizedDocument:
        translated = self._translations_for(record, locale)

        fields: dict[str, Any] = {
            "id": record.id,
            "name": translated.get("name", record.name),
            "description": translated.get("description", record.description),
            "category": translated.get("category", record.category_name),
            "price": record.price_cents / 100 if record.price_cents is not None else None,
            "stock": record.stock,
            "in_stock": record.stock > 0,
            "locale": locale,
        }
        return LocalizedDocument(locale=locale, fields=fields)

    @staticmethod
    def _translations_for(record: ProductRecord, locale: str) -> dict[str, str]:
        if locale in record.translations:
            return record.translations[locale]
        language = locale.split("_", 1)[0]
        return record.translations.get(language, {})
