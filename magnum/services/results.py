# magnum/services/results.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import EconomyError


@dataclass
class Result:
    """Structured outcome of a public economy operation."""

    success: bool
    message: str = ""
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data: Any) -> "Result":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: EconomyError, **data: Any) -> "Result":
        return cls(success=False, message=error.message, error=error.code, data=data)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, **self.data}
        if self.message:
            out["message"] = self.message
        if self.error:
            out["error"] = self.error
        return out
