"""
Cost Estimation
Token/price arithmetic for generated images, used for live job costing and
for the spend summary.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from app.core.config import settings
from app.schemas.job import CostSummary, JobRecord, JobStatus


def estimate_cost(
    images_out: int = 1,
    output_tokens: Optional[int] = None,
    total_tokens: Optional[int] = None,
    tokens_per_image: Optional[int] = None,
    price_per_million: Optional[float] = None,
) -> float:
    """
    Estimate USD cost of a generation.

    Token count is ``total_tokens`` if positive, else ``output_tokens`` if
    positive, else ``images_out * tokens_per_image``. Rounded to 4 decimals.
    """
    per_image = settings.TOKENS_PER_IMAGE if tokens_per_image is None else tokens_per_image
    price = settings.PRICE_PER_MILLION_OUTPUT if price_per_million is None else price_per_million

    if total_tokens and total_tokens > 0:
        tokens = total_tokens
    elif output_tokens and output_tokens > 0:
        tokens = output_tokens
    else:
        tokens = max(images_out or 0, 0) * per_image

    if tokens <= 0:
        return 0.0
    return round(tokens / 1_000_000 * price, 4)


def build_usage(images_out: int, tokens_per_image: Optional[int] = None) -> Dict[str, int]:
    """Usage record for a generation that returned ``images_out`` images."""
    per_image = settings.TOKENS_PER_IMAGE if tokens_per_image is None else tokens_per_image
    return {
        "images_out": images_out,
        "output_tokens": images_out * per_image,
    }


def summarize_costs(jobs: Iterable[JobRecord], now: datetime) -> CostSummary:
    """Spend of succeeded jobs finished today, in the last 7 and last 30 days."""
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    seven_days_ago = now - timedelta(days=7)
    thirty_days_ago = now - timedelta(days=30)

    today = last7 = last30 = 0.0
    for job in jobs:
        if job.status != JobStatus.SUCCEEDED:
            continue
        cost = float(job.cost_usd or 0)
        finished = job.finished_at or job.created_at or datetime.min

        if finished >= today_start:
            today += cost
        if finished >= seven_days_ago:
            last7 += cost
        if finished >= thirty_days_ago:
            last30 += cost

    return CostSummary(today=round(today, 4), last7=round(last7, 4), last30=round(last30, 4))
