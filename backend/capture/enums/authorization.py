"""
Speech-recognition authorization status.

Three-valued and cached for the process lifetime once resolved.
"""

from __future__ import annotations

from enum import Enum


class Authorization(str, Enum):
    """
    UNKNOWN:
        Never requested in this process.

    DENIED:
        Requested and refused. Not requested again.

    GRANTED:
        Requested and allowed.
    """

    UNKNOWN = "UNKNOWN"
    DENIED = "DENIED"
    GRANTED = "GRANTED"
