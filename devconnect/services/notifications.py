import logging
from typing import List, Literal, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Toast(BaseModel):
    kind: Literal["success", "error", "info"]
    message: str


class ToastCenter:
    """Collects user-facing notifications raised by the view-models."""

    def __init__(self):
        self.toasts: List[Toast] = []

    def _push(self, kind: str, message: str) -> Toast:
        toast = Toast(kind=kind, message=message)
        self.toasts.append(toast)
        logger.debug(f"Toast ({kind}): {message}")
        return toast

    def success(self, message: str) -> Toast:
        return self._push("success", message)

    def error(self, message: str) -> Toast:
        return self._push("error", message)

    def info(self, message: str) -> Toast:
        return self._push("info", message)

    @property
    def last(self) -> Optional[Toast]:
        return self.toasts[-1] if self.toasts else None

    def messages(self, kind: Optional[str] = None) -> List[str]:
        return [toast.message for toast in self.toasts if kind is None or toast.kind == kind]

    def clear(self):
        self.toasts.clear()
