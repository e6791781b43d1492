"""
Registry of supported jurisdictions.
"""

from typing import Dict, Type

from .base import Jurisdiction
from .maryland import Maryland
from .massachusetts import Massachusetts

JURISDICTIONS: Dict[str, Type[Jurisdiction]] = {
    Maryland.code: Maryland,
    Massachusetts.code: Massachusetts,
}


def get_jurisdiction(code: str) -> Type[Jurisdiction]:
    """
    Look up a jurisdiction class by its code.

    Raises:
        ValueError: If the code is unknown
    """
    try:
        return JURISDICTIONS[code.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown jurisdiction: {code}. Must be one of {sorted(JURISDICTIONS)}"
        ) from None


__all__ = ['Jurisdiction', 'Maryland', 'Massachusetts', 'JURISDICTIONS', 'get_jurisdiction']
