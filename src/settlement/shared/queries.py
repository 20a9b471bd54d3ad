from protean.utils.globals import current_domain

PAGE_SIZE = 100


def fetch_all(aggregate_cls, **filters) -> list:
    """Every record matching ``filters``, paging past the DAO's default limit."""
    query = current_domain.repository_for(aggregate_cls)._dao.query.filter(**filters)
    items = []
    offset = 0
    while True:
        page = query.offset(offset).limit(PAGE_SIZE).all().items
        items.extend(page)
        if len(page) < PAGE_SIZE:
            return items
        offset += PAGE_SIZE
