from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class Event:
    """Progress notification emitted while the agent runs, for rendering only"""

    event_type: str
    data: Optional[dict[str, Any]] = None
