"""Outstanding collaboration request tracking."""
import logging
from enum import Enum
from typing import Dict, List, Optional

from videodesk.core.exceptions import FeatureBusyError

logger = logging.getLogger(__name__)


class FeatureKind(str, Enum):
    """Collaboration sub-protocols that can have a request in flight."""

    FILE_PREVIEW = "file_preview"  # awaiting file-preview-closed
    FILE_REQUEST = "file_request"  # awaiting file-share
    SIGNING = "signing"  # awaiting signed-document
    COBROWSE = "cobrowse"  # awaiting cobrowsing-url

    def __str__(self) -> str:
        return self.value


class FeatureExchanges:
    """At most one outstanding exchange per kind, owned by the initiator."""

    def __init__(self):
        self._outstanding: Dict[FeatureKind, int] = {}
        self._counter = 0

    def begin(self, kind: FeatureKind) -> None:
        """Mark an exchange as started, rejecting a second one of the same kind."""
        if kind in self._outstanding:
            raise FeatureBusyError(kind.value)
        self._counter += 1
        self._outstanding[kind] = self._counter

    def complete(self, kind: FeatureKind) -> bool:
        """Clear an exchange; False means nothing of that kind was outstanding."""
        return self._outstanding.pop(kind, None) is not None

    def is_outstanding(self, kind: FeatureKind) -> bool:
        return kind in self._outstanding

    def latest(self) -> Optional[FeatureKind]:
        """The most recently started exchange still in flight."""
        if not self._outstanding:
            return None
        return max(self._outstanding, key=self._outstanding.get)

    @property
    def outstanding(self) -> List[FeatureKind]:
        return list(self._outstanding)

    def clear(self) -> None:
        if self._outstanding:
            logger.debug(f"[COLLABORATION] Clearing outstanding exchanges: {self.outstanding}")
        self._outstanding.clear()
