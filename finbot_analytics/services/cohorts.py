from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from finbot_analytics.schemas.cohort import Bucket
from finbot_analytics.services.anchors import AnchorMap
from finbot_analytics.services.periods import period_start, cohort_key


@dataclass(frozen=True)
class Cohort:
    """Users whose anchor falls in the same calendar period"""
    key: str
    period_start: datetime
    member_ids: Tuple[int, ...]

    @property
    def size(self) -> int:
        return len(self.member_ids)


def build_cohorts(
        anchors: AnchorMap,
        bucket: Bucket,
        limit: Optional[int] = None
) -> List[Cohort]:
    """
    Group anchored users into calendar cohorts.

    Returns cohorts ascending by period start. With `limit`, only the most
    recent `limit` cohorts are kept. An empty anchor map yields an empty list.
    """
    groups: Dict[datetime, List[int]] = {}
    for user_id, anchored_at in anchors.items():
        groups.setdefault(period_start(anchored_at, bucket), []).append(user_id)

    cohorts = [
        Cohort(key=cohort_key(start, bucket), period_start=start, member_ids=tuple(members))
        for start, members in sorted(groups.items(), key=lambda item: item[0])
    ]

    if limit:
        cohorts = cohorts[-limit:]

    return cohorts
