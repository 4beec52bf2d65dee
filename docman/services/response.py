class ListResponseMixin:
    """Wraps a service's ``list`` call in the paginated envelope.

    ``list`` is expected to take ``limit`` and ``offset`` as its last two
    positional arguments, which every list signature in the services does.
    """

    @classmethod
    def list_response(cls, db, *args, **kwargs):
        items = cls.list(db, *args, **kwargs)
        limit = kwargs.get("limit", args[-2] if len(args) >= 2 else None)
        offset = kwargs.get("offset", args[-1] if args else None)
        return {
            "items": items,
            "count": len(items),
            "limit": limit,
            "offset": offset,
        }
