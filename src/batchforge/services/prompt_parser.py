"""Prompt text parsing and batch cost estimation."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from batchforge.config import get_settings
from batchforge.services.rate_limiter import model_family

logger = logging.getLogger(__name__)

# Prompts are separated by one or more blank lines
_PROMPT_SEPARATOR = re.compile(r"\n\n+")


def parse_prompts(text: Optional[str]) -> List[str]:
    """
    Split multiline text into prompts.

    Line endings are normalized first, so Windows and old Mac files split
    the same way. Surrounding whitespace is trimmed and empty blocks dropped.

    Args:
        text: Raw prompt text, one prompt per blank-line separated block

    Returns:
        List[str]: Prompts in the order they appear
    """
    if not text:
        return []

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    prompts = [block.strip() for block in _PROMPT_SEPARATOR.split(normalized)]
    prompts = [prompt for prompt in prompts if prompt]

    logger.debug(f"Parsed {len(prompts)} prompt(s) from text")
    return prompts


@dataclass
class CostEstimate:
    """Expected provider charge for a batch."""

    total_cost: float
    cost_per_image: float
    image_count: int
    currency: str = "USD"


def estimate_cost(image_count: int, model: Optional[str] = None) -> CostEstimate:
    """
    Estimate the provider charge for generating ``image_count`` images.

    Args:
        image_count: Number of items in the batch
        model: Generation model; Pro models are priced separately

    Returns:
        CostEstimate: Total rounded to cents
    """
    settings = get_settings()
    if model_family(model) == "pro":
        per_image = settings.PRO_COST_PER_IMAGE_USD
    else:
        per_image = settings.COST_PER_IMAGE_USD

    return CostEstimate(
        total_cost=round(image_count * per_image, 2),
        cost_per_image=per_image,
        image_count=image_count,
    )
