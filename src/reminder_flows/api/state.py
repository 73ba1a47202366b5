"""
Process-wide API state filled by the application lifespan
"""
from typing import Any, Dict


app_state: Dict[str, Any] = {}


def get_app_state() -> Dict[str, Any]:
    return app_state
