"""
Entity -> markdown renderers, selected by embedding table name.

Pure and deterministic: same record => same markdown. The markdown is what gets embedded and
what is stored in content_markdown.
"""

from decimal import Decimal
from typing import Protocol, runtime_checkable

from apps.embedding.schemas.embedding import (
    DOCUMENT_EMBEDDINGS,
    PRODUCT_EMBEDDINGS,
    DocumentRecord,
    ProductRecord,
)


class UnsupportedTableError(ValueError):
    """Raised when no renderer is registered for a table name."""

    pass


@runtime_checkable
class MarkdownRenderer(Protocol):
    """Renders one entity record into markdown."""

    def generate_markdown(self, record) -> str:
        ...


def _format_price(price: Decimal | float | int | None) -> str:
    """10.50 -> '10.5', 10.00 -> '10'. Numeric columns come back as Decimal."""
    if price is None:
        return ""
    if isinstance(price, Decimal):
        return format(price.normalize(), "f")
    if isinstance(price, float) and price.is_integer():
        return str(int(price))
    return str(price)


class ProductMarkdownRenderer:
    """Name, type, description, category block, pricing block. Empty sections omitted."""

    def generate_markdown(self, record: ProductRecord) -> str:
        parts = [f"# {record.name}\n\n", f"**Product Type:** {record.type}\n\n"]

        if record.description:
            parts.append(f"## Description\n{record.description}\n\n")

        category = record.category
        if category is not None:
            parts.append("## Category\n")
            parts.append(f"**Category:** {category.name}\n")
            if category.description:
                parts.append(f"**Category Description:** {category.description}\n")
            parts.append("\n")

        details = record.details
        if details is not None:
            parts.append("## Pricing\n")
            if details.price is not None:
                price = " ".join(p for p in (details.currency or "", _format_price(details.price)) if p)
                parts.append(f"**Price:** {price}\n")
            if details.detailed_description:
                parts.append(f"**Detailed Description:** {details.detailed_description}\n")
            parts.append("\n")

        return "".join(parts).strip()


class DocumentMarkdownRenderer:
    def generate_markdown(self, record: DocumentRecord) -> str:
        markdown = f"# {record.name}\n\n"
        if record.url:
            markdown += f"**URL:** {record.url}\n\n"
        if record.type:
            markdown += f"**Type:** {record.type}\n\n"
        return markdown.strip()


_RENDERERS: dict[str, MarkdownRenderer] = {
    PRODUCT_EMBEDDINGS: ProductMarkdownRenderer(),
    DOCUMENT_EMBEDDINGS: DocumentMarkdownRenderer(),
}


def get_renderer(table_name: str) -> MarkdownRenderer:
    """Renderer for an embedding table. Raises UnsupportedTableError for unknown tables."""
    renderer = _RENDERERS.get((table_name or "").strip())
    if renderer is None:
        raise UnsupportedTableError(f"No markdown renderer for table {table_name!r}")
    return renderer


def render(table_name: str, record) -> str:
    """Convenience: render one record for table_name."""
    return get_renderer(table_name).generate_markdown(record)
