"""pcardflow integrations module."""

from pcardflow.integrations.godaddy import (
    GoDaddyClient,
    OrderSourceError,
    OrderSourceNotConfiguredError,
)
from pcardflow.integrations.vision_extractor import (
    ExtractionError,
    ExtractionIncompleteError,
    ExtractionRefusedError,
    ReceiptImage,
    VisionExtractor,
)

__all__ = [
    "ExtractionError",
    "ExtractionIncompleteError",
    "ExtractionRefusedError",
    "GoDaddyClient",
    "OrderSourceError",
    "OrderSourceNotConfiguredError",
    "ReceiptImage",
    "VisionExtractor",
]
