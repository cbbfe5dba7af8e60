# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/matcher.py
"""
Keyword matching of feed items against alert rules.

Matching is literal: each keyword is a case-insensitive substring test
against the item's title + description. Keywords wrapped in double quotes
are exact phrases and are matched the same way once the quotes are removed.
There is no boolean operator support; "a and b" is matched as the literal
phrase "a and b".
"""
from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .schema import AlertConfig, AlertPriority, AlertTrigger, FeedItem

logger = logging.getLogger(__name__)

PRIORITY_MULTIPLIERS = {
    AlertPriority.LOW: 1.0,
    AlertPriority.MEDIUM: 1.2,
    AlertPriority.HIGH: 1.5,
    AlertPriority.CRITICAL: 2.0,
}


def _needle(keyword: Any) -> Optional[str]:
    """Lowercased search term for a keyword, or None if it should be skipped."""
    if not isinstance(keyword, str):
        return None
    term = keyword.strip()
    if len(term) >= 2 and term.startswith('"') and term.endswith('"'):
        term = term[1:-1].strip()
    if not term:
        return None
    return term.lower()


def match_keywords(text: Optional[str], keywords: Sequence[Any]) -> List[str]:
    """
    Return the keywords (as given) that occur in ``text``.

    Implicit OR across the list. Malformed or blank keywords are skipped,
    never raised on. Empty text matches nothing.
    """
    if not text or not text.strip() or not keywords:
        return []

    haystack = text.lower()
    matched: List[str] = []
    for keyword in keywords:
        needle = _needle(keyword)
        if needle is None:
            continue
        if needle in haystack and keyword not in matched:
            matched.append(keyword)
    return matched


def match_item(item: FeedItem, keywords: Sequence[Any]) -> List[str]:
    return match_keywords(item.text, keywords)


def calculate_relevance_score(trigger: AlertTrigger, alert: AlertConfig) -> int:
    """
    Rank a trigger for display.

    10 points per matched keyword, 5 more for each one that occurs literally
    in the text, scaled by the alert priority, plus 15 for a title hit.
    """
    score = len(trigger.matched_keywords) * 10.0

    content = trigger.feed_item.text.lower()
    for keyword in trigger.matched_keywords:
        if keyword.lower() in content:
            score += 5

    score *= PRIORITY_MULTIPLIERS.get(alert.priority, 1.0)

    title = (trigger.feed_item.title or "").lower()
    if any(keyword.lower() in title for keyword in trigger.matched_keywords):
        score += 15

    return int(round(score))


@dataclass
class TriggerGroups:
    by_alert: Dict[str, List[AlertTrigger]] = field(default_factory=dict)
    by_priority: Dict[str, List[AlertTrigger]] = field(default_factory=dict)
    total: int = 0


def group_triggers(triggers: Iterable[AlertTrigger], alerts: Iterable[AlertConfig]) -> TriggerGroups:
    """Bucket triggers by alert id and by the owning alert's current priority."""
    priority_of = {a.id: a.priority.value for a in alerts}
    by_alert: Dict[str, List[AlertTrigger]] = defaultdict(list)
    by_priority: Dict[str, List[AlertTrigger]] = defaultdict(list)
    total = 0

    for trigger in triggers:
        total += 1
        by_alert[trigger.alert_id].append(trigger)
        priority = priority_of.get(trigger.alert_id)
        if priority is not None:
            by_priority[priority].append(trigger)

    return TriggerGroups(by_alert=dict(by_alert), by_priority=dict(by_priority), total=total)
