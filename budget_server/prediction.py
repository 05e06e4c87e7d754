"""
Budget Server - Name Prediction

PURPOSE: Suggest likely expense names for a new entry from past records
SCOPE: Pure ranking heuristic plus a best-effort loader over a tenant database
DEPENDENCIES: managers.py (record snapshot), validators.py

Ranking: names are grouped after trimming and case folding, then ordered by
how often they occur (descending), then by the most recent occurred_at
(descending), then alphabetically. Frequency wins over recency: a name seen
three times last week outranks a name seen once today.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .config import DEFAULT_SUGGESTION_LIMIT, MAX_SUGGESTION_LIMIT
from .database import TenantHandle
from .errors import PredictionUnavailable
from .managers import RecordManager
from .models import Record, Suggestion
from .validators import normalize_name

logger = logging.getLogger(__name__)


@dataclass
class _NameGroup:
    count: int
    latest: Record


def rank_suggestions(
    records: Iterable[Record],
    category_id: int,
    prefix: Optional[str] = None,
    limit: int = DEFAULT_SUGGESTION_LIMIT,
) -> List[Suggestion]:
    """Rank distinct record names within a category.

    ``prefix`` matches case-insensitively against the start of the trimmed
    name. Each suggestion carries the spelling and amount of the group's
    most recent record.
    """
    limit = max(0, min(limit, MAX_SUGGESTION_LIMIT))
    needle = normalize_name(prefix) if prefix else ""

    groups: Dict[str, _NameGroup] = {}
    for record in records:
        if record.category_id != category_id:
            continue
        key = normalize_name(record.name)
        if not key or not key.startswith(needle):
            continue
        group = groups.get(key)
        if group is None:
            groups[key] = _NameGroup(count=1, latest=record)
            continue
        group.count += 1
        if (record.occurred_at, record.id) > (group.latest.occurred_at, group.latest.id):
            group.latest = record

    ranked = sorted(groups.items(), key=lambda item: item[0])
    ranked.sort(key=lambda item: (item[1].count, item[1].latest.occurred_at), reverse=True)

    return [
        Suggestion(
            name=group.latest.name.strip(),
            count=group.count,
            last_amount=group.latest.amount,
            last_occurred_at=group.latest.occurred_at,
        )
        for _, group in ranked[:limit]
    ]


async def load_candidates(handle: TenantHandle, category_id: int) -> List[Record]:
    try:
        return await RecordManager(handle).records_for_category(category_id)
    except Exception as e:
        raise PredictionUnavailable(str(e)) from e


async def suggest(
    handle: TenantHandle,
    category_id: int,
    prefix: Optional[str] = None,
    limit: int = DEFAULT_SUGGESTION_LIMIT,
) -> List[Suggestion]:
    """Best-effort name suggestions for a category. Never raises."""
    try:
        candidates = await load_candidates(handle, category_id)
        return rank_suggestions(candidates, category_id, prefix=prefix, limit=limit)
    except Exception as e:
        logger.warning("Suggestions unavailable for tenant %s: %s", handle.tenant_id, e)
        return []
