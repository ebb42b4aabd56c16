"""Page metadata shared by every list operation."""
import math
from typing import Dict


def page_meta(page: int, page_size: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": math.ceil(total / page_size) or 1,
    }
