from typing import Tuple


def normalize_paging(page, page_size, max_page_size: int = 100) -> Tuple[int, int]:
    try:
        p = int(page or 1)
        ps = int(page_size or 20)
    except (TypeError, ValueError):
        return 1, 20
    p = p if p > 0 else 1
    ps = ps if ps > 0 else 20
    return p, min(ps, max_page_size)
