def list_response(
    items: list, limit: int, offset: int, *, total: int | None = None
) -> dict:
    return {
        "items": items,
        "count": len(items),
        "limit": limit,
        "offset": offset,
        "total": total if total is not None else len(items),
    }


class ListResponseMixin:
    """``list_response(db, *filters, order_by, order_dir, limit, offset)``.

    Wraps the service's ``list`` (which returns ``(items, total)``) in the
    standard list envelope.
    """

    def list_response(self, db, *args, **kwargs) -> dict:
        if "limit" in kwargs and "offset" in kwargs:
            limit = kwargs["limit"]
            offset = kwargs["offset"]
            result = self.list(db, *args, **kwargs)
        else:
            if len(args) < 2:
                raise ValueError("limit and offset are required for list responses")
            *list_args, limit, offset = args
            result = self.list(db, *list_args, limit=limit, offset=offset, **kwargs)
        items, total = result
        return list_response(items, limit, offset, total=total)
