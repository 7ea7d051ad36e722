# Overview: Offset pagination shared by list endpoints.

from __future__ import annotations


def paginate(query, page: int | None, per_page: int | None, serialize=None) -> dict:
    per_page = max(1, min(per_page or 20, 100))  # Default 20, max 100
    page = max(page or 1, 1)
    serialize = serialize or (lambda row: row.to_dict())

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [serialize(row) for row in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
