from django.utils import timezone


def next_number(model, field: str, prefix: str, width: int = 4, day=None) -> str:
    """Next ``<prefix>-YYYYMMDD-NNNN`` value for ``model.field``.

    Call inside a transaction; the latest row for the day is locked so
    concurrent callers queue behind each other.
    """
    stamp = (day or timezone.localdate()).strftime('%Y%m%d')
    base = f'{prefix}-{stamp}-'
    last = (
        model.objects.select_for_update()
        .filter(**{f'{field}__startswith': base})
        .order_by(f'-{field}')
        .values_list(field, flat=True)
        .first()
    )
    seq = int(last.rsplit('-', 1)[1]) + 1 if last else 1
    return f'{base}{seq:0{width}d}'
