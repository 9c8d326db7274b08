"""Page/limit pagination and ``sortBy`` parsing for list endpoints."""
from typing import Any, Mapping, Tuple

from sqlalchemy.orm import Query

from .errors import ValidationError
from .schemas import Pagination

MAX_PAGE_SIZE = 100


def apply_sort(query: Query, sort_by: str, columns: Mapping[str, Any]) -> Query:
    """Order ``query`` by ``field`` or ``-field`` (descending); ties fall back to id."""

    descending = sort_by.startswith("-")
    field = sort_by.lstrip("-+")
    column = columns.get(field)
    if column is None:
        raise ValidationError(f"Cannot sort by '{field}'. Allowed: {', '.join(sorted(columns))}")
    id_column = columns.get("id")
    order = [column.desc() if descending else column.asc()]
    if id_column is not None and id_column is not column:
        order.append(id_column.desc() if descending else id_column.asc())
    return query.order_by(*order)


def paginate(query: Query, page: int, limit: int, *options: Any) -> Tuple[list, Pagination]:
    """Return one page of ``query`` plus its metadata; ``options`` (eager loads) apply to the page only."""

    total = query.order_by(None).count()
    items = query.options(*options).offset((page - 1) * limit).limit(limit).all()
    return items, Pagination.build(page, limit, total)
