from typing import Any, Callable, Dict, Tuple


def clamp_page(page: int, limit: int, max_limit: int = 100) -> Tuple[int, int, int]:
    """Return (page, limit, offset) with sane bounds."""
    limit = min(max(1, limit), max_limit)
    page = max(1, page)
    return page, limit, (page - 1) * limit


def paginate(query, page: int, limit: int, order_by, serialize: Callable[[Any], Dict]) -> Dict[str, Any]:
    page, limit, offset = clamp_page(page, limit)
    total = query.count()
    rows = query.order_by(order_by).offset(offset).limit(limit).all()
    return {
        "items": [serialize(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
