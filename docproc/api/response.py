from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ApiResponse:
    """HTTP-equivalent result handed to collaborators. `body` is JSON-safe."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    replayed: bool = False

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300
