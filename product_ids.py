"""Human-readable sequential product identifiers (PREFIX-<integer>).

Assignment is best-effort: the repository reads the latest identifier and
asks for the next one. Uniqueness is guaranteed by the unique index on
productId, with the repository retrying on collision.
"""

import re
from typing import Optional

DEFAULT_PREFIX = "EGM-PROD"
DEFAULT_BASE = 1001


def product_id_pattern(prefix: str = DEFAULT_PREFIX) -> str:
    """Regex matching well-formed identifiers for ``prefix``."""
    return rf"^{re.escape(prefix)}-(\d+)$"


def format_product_id(sequence: int, prefix: str = DEFAULT_PREFIX) -> str:
    return f"{prefix}-{sequence}"


def parse_sequence(product_id: Optional[str], prefix: str = DEFAULT_PREFIX) -> Optional[int]:
    """Numeric suffix of ``product_id``, or None when it is malformed."""
    if not isinstance(product_id, str):
        return None
    match = re.match(product_id_pattern(prefix), product_id)
    if match is None:
        return None
    return int(match.group(1))


def next_product_id(
    latest_id: Optional[str],
    prefix: str = DEFAULT_PREFIX,
    base: int = DEFAULT_BASE,
) -> str:
    """
    Identifier following ``latest_id``.

    Starts at ``base`` when there is no previous identifier. A malformed
    previous identifier also yields ``base`` instead of raising.
    """
    sequence = parse_sequence(latest_id, prefix)
    if sequence is None:
        return format_product_id(base, prefix)
    return format_product_id(max(sequence + 1, base), prefix)
