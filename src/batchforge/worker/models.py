"""Worker data models and result classes."""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from batchforge.core.enums import FailureKind, ItemStatus
from batchforge.core.exceptions import InvalidBatchError


@dataclass(frozen=True)
class ReferenceImage:
    """Base64 encoded reference asset sent alongside every prompt."""

    data: str
    mime_type: str


@dataclass(frozen=True)
class GenerationParams:
    """Parameters shared by every item of a batch."""

    model: str
    aspect_ratio: str = "1:1"
    resolution: Optional[str] = "1K"
    reference_images: Tuple[ReferenceImage, ...] = ()


@dataclass(frozen=True)
class BatchItem:
    """One unit of work; index is its stable position in the submitted batch."""

    index: int
    prompt: str


@dataclass
class ItemOutcome:
    """
    Result of processing one item.

    Tracks whether the item succeeded and its artifact or failure reason.
    """

    index: int
    status: ItemStatus
    attempts: int = 0
    artifact_ref: Optional[str] = None
    media_type: Optional[str] = None
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    processing_time_ms: int = 0


@dataclass
class Batch:
    """Items and shared parameters read from an execution's stored input."""

    items: List[BatchItem]
    params: GenerationParams


def read_batch(input_data: Optional[Dict[str, Any]], default_model: str) -> Batch:
    """
    Parse the stored batch request.

    Args:
        input_data: Execution input ({"items": [...], "params": {...}})
        default_model: Model used when params name none

    Returns:
        Batch: Parsed items and parameters

    Raises:
        InvalidBatchError: If the batch is empty or unreadable
    """
    if not isinstance(input_data, dict):
        raise InvalidBatchError("Batch input is missing or unreadable")

    raw_items = input_data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise InvalidBatchError("Batch contains no items")

    items = []
    for index, raw in enumerate(raw_items):
        prompt = raw.get("prompt") if isinstance(raw, dict) else raw
        if not isinstance(prompt, str):
            raise InvalidBatchError(f"Item {index} has no prompt")
        items.append(BatchItem(index=index, prompt=prompt))

    raw_params = input_data.get("params") or {}
    if not isinstance(raw_params, dict):
        raise InvalidBatchError("Batch parameters are unreadable")

    references = []
    for raw in raw_params.get("reference_images") or []:
        if isinstance(raw, dict) and raw.get("data") and raw.get("mime_type"):
            references.append(ReferenceImage(data=raw["data"], mime_type=raw["mime_type"]))

    params = GenerationParams(
        model=raw_params.get("model") or default_model,
        aspect_ratio=raw_params.get("aspect_ratio") or "1:1",
        resolution=raw_params.get("resolution") or "1K",
        reference_images=tuple(references),
    )
    return Batch(items=items, params=params)
