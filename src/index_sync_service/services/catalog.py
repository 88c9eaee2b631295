"""Catalog cursor over the e-commerce product tables.

Reads products page by page from the e-commerce public schema so that memory
use stays bounded regardless of catalog size.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from index_sync_service.errors import ResourceError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProductRecord:
    """One catalog product as read from the e-commerce schema."""

    id: str
    name: str
    description: str | None = None
    price_cents: int | None = None
    stock: int = 0
    is_active: bool = True
    category_name: str | None = None
    # locale -> field name -> translated text
    translations: dict[str, dict[str, str]] = field(default_factory=dict)


class RecordCursor(Protocol):
    """Forward-only cursor over catalog records."""

    @property
    def count(self) -> int: ...

    async def next(self) -> ProductRecord | None: ...

    async def close(self) -> None: ...


class ProductCursor:
    """Keyset-paged cursor over ``public.products`` in ``id`` order.

    Each page starts after the last id read, so products created or deleted
    during a run never shift later pages. The total count is taken once when
    the cursor is opened and caps the number of records returned. The cursor
    owns its database session; ``close`` releases it.
    """

    def __init__(self, session: AsyncSession, count: int, page_size: int = 500):
        self.session = session
        self.page_size = page_size
        self._count = count
        self._returned = 0
        self._last_id: Any = None
        self._exhausted = False
        self._buffer: deque[ProductRecord] = deque()
        self._closed = False

    @classmethod
    async def open(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        page_size: int = 500,
    ) -> "ProductCursor":
        session = session_factory()
        try:
            result = await session.execute(text("SELECT COUNT(*) FROM public.products"))
            count = result.scalar() or 0
        except Exception:
            await session.close()
            raise
        logger.info("Opened product cursor", total_products=count, page_size=page_size)
        return cls(session, count, page_size=page_size)

    @property
    def count(self) -> int:
        return self._count

    async def next(self) -> ProductRecord | None:
        if self._closed or self._returned >= self._count:
            return None
        if not self._buffer and not self._exhausted:
            await self._fetch_page()
        if not self._buffer:
            return None
        self._returned += 1
        return self._buffer.popleft()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        await self.session.close()

    async def _fetch_page(self) -> None:
        limit = min(self.page_size, self._count - self._returned)
        params: dict[str, Any] = {"limit": limit}
        after_last = ""
        if self._last_id is not None:
            after_last = "WHERE p.id > :last_id"
            params["last_id"] = self._last_id

        query = text(f"""
            SELECT
                p.id,
                p.name,
                p.description,
                p."priceCents" as price_cents,
                p.stock,
                p."isActive" as is_active,
                c.name as category_name
            FROM public.products p
            LEFT JOIN public.categories c ON p."categoryId" = c.id
            {after_last}
            ORDER BY p.id ASC
            LIMIT :limit
        """)
        result = await self.session.execute(query, params)
        rows = result.fetchall()
        if len(rows) < limit:
            # Catalog shrank since the count was taken
            self._exhausted = True
        if not rows:
            return
        self._last_id = rows[-1].id

        translations = await self._fetch_translations([row.id for row in rows])
        for row in rows:
            product_id = str(row.id)
            self._buffer.append(
                ProductRecord(
                    id=product_id,
                    name=row.name,
                    description=row.description,
                    price_cents=row.price_cents,
                    stock=row.stock or 0,
                    is_active=bool(row.is_active),
                    category_name=row.category_name,
                    translations=translations.get(product_id, {}),
                )
            )
        logger.debug("Fetched product page", last_id=self._last_id, rows=len(rows))

    async def _fetch_translations(
        self, product_ids: list[Any]
    ) -> dict[str, dict[str, dict[str, str]]]:
        query = text("""
            SELECT
                t."productId" as product_id,
                t.locale,
                t.name,
                t.description
            FROM public.product_translations t
            WHERE t."productId" IN :ids
        """).bindparams(bindparam("ids", expanding=True))
        result = await self.session.execute(query, {"ids": product_ids})

        translations: dict[str, dict[str, dict[str, str]]] = {}
        for row in result.fetchall():
            fields = {
                key: value
                for key, value in (("name", row.name), ("description", row.description))
                if value
            }
            translations.setdefault(str(row.product_id), {})[row.locale] = fields
        return translations


async def release_cursor(cursor: RecordCursor) -> None:
    """Close a cursor, reporting any failure as a ResourceError."""
    try:
        await cursor.close()
    except Exception as e:
        raise ResourceError(f"Failed to close catalog cursor: {e}") from e
