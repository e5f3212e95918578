"""Pydantic schemas for Execution API."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, model_validator
from batchforge.config import get_settings
from batchforge.core.enums import ExecutionStatus, FailureKind, ItemStatus
from batchforge.core.security import ALGORITHM
from batchforge.services.prompt_parser import parse_prompts


class ReferenceImageIn(BaseModel):
    """Reference asset sent with every prompt of the batch."""

    data: str = Field(..., min_length=1, description="Base64 encoded image bytes")
    mime_type: str = Field(default="image/png", description="Image media type")


class GenerationParamsIn(BaseModel):
    """Parameters shared by every item of a batch."""

    model: Optional[str] = Field(default=None, description="Generation model (defaults to the configured model)")
    aspect_ratio: str = Field(default="1:1", max_length=10, description="Output aspect ratio")
    resolution: Optional[str] = Field(default="1K", max_length=10, description="Output size (Pro models only)")
    reference_images: List[ReferenceImageIn] = Field(default_factory=list, description="Reference images")


class BatchItemIn(BaseModel):
    """One prompt of a batch."""

    prompt: str = Field(..., description="Generation prompt")


class EncryptedCredential(BaseModel):
    """AES-256-GCM encrypted provider credential, hex encoded."""

    encrypted: str
    iv: str
    authTag: str
    salt: Optional[str] = None
    algorithm: str = ALGORITHM


class BatchSubmit(BaseModel):
    """Schema for submitting a batch."""

    items: List[BatchItemIn] = Field(default_factory=list, description="Batch items in order")
    prompts_text: Optional[str] = Field(
        default=None, description="Prompts separated by blank lines, instead of items"
    )
    params: GenerationParamsIn = Field(default_factory=GenerationParamsIn, description="Shared parameters")
    encrypted_credential: Optional[EncryptedCredential] = Field(
        default=None, description="Encrypted provider credential"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "items": [{"prompt": "A lighthouse at dusk"}, {"prompt": "A red bicycle"}],
                    "params": {"model": "gemini-2.5-flash-image", "aspect_ratio": "16:9"},
                    "encrypted_credential": {
                        "encrypted": "9f2c...",
                        "iv": "a1b2...",
                        "authTag": "c3d4...",
                        "algorithm": "aes-256-gcm",
                    },
                },
                {
                    "prompts_text": "A lighthouse at dusk\n\nA red bicycle",
                    "params": {"model": "gemini-3-pro-image-preview", "resolution": "2K"},
                },
            ]
        }
    }

    @model_validator(mode="after")
    def expand_prompts_text(self) -> "BatchSubmit":
        """Build items from prompts_text and enforce the batch size limit."""
        if self.prompts_text is not None:
            if self.items:
                raise ValueError("Provide either items or prompts_text, not both")
            self.items = [BatchItemIn(prompt=prompt) for prompt in parse_prompts(self.prompts_text)]

        max_items = get_settings().MAX_ITEMS_PER_BATCH
        if len(self.items) > max_items:
            raise ValueError(f"Maximum {max_items} items allowed, got {len(self.items)}")
        return self

    def to_input(self) -> Dict[str, Any]:
        """Batch request as stored on the execution (credential and raw text excluded)."""
        return self.model_dump(exclude={"encrypted_credential", "prompts_text"})


class ItemResultResponse(BaseModel):
    """Schema for one item result."""

    index: int
    status: ItemStatus
    artifact_ref: Optional[str]
    media_type: Optional[str]
    error_message: Optional[str]
    failure_kind: Optional[FailureKind]
    attempts: int
    processing_time_ms: int
    completed_at: Optional[datetime]

    model_config = {"from_attributes": True}


class ExecutionResponse(BaseModel):
    """Schema for execution responses. The credential is never returned."""

    id: UUID
    status: ExecutionStatus
    progress: int
    input: Dict[str, Any]
    total_items: int
    succeeded: int
    failed: int
    results: List[ItemResultResponse]
    error: Optional[str]
    cancel_requested: bool
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    duration_seconds: Optional[float]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CostEstimateResponse(BaseModel):
    """Expected provider charge for a submitted batch."""

    total_cost: float
    cost_per_image: float
    image_count: int
    currency: str

    model_config = {"from_attributes": True}


class SubmitResponse(BaseModel):
    """Response for batch submission."""

    execution_id: UUID
    status: ExecutionStatus
    estimated_cost: CostEstimateResponse


class CancelResponse(BaseModel):
    """Response for a cancellation request."""

    execution_id: UUID
    status: ExecutionStatus
    cancel_requested: bool
    message: str
