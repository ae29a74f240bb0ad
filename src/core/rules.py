"""Forwarding rule resolution (core domain)."""

from __future__ import annotations

from typing import Iterable, List, Optional

from core.models import ForwardingRule


def rule_matches(rule: ForwardingRule, chat_id: int, topic_id: Optional[int]) -> bool:
    """Return True if the rule applies to a message from (chat_id, topic_id).

    Matching logic:
    - Disabled rules never match.
    - The source chat must be equal.
    - A rule without a source topic matches every topic of the chat; a rule
      with a topic only matches messages from that topic.
    """

    if not rule.active:
        return False
    if rule.source_chat_id != chat_id:
        return False
    if rule.source_topic_id is None:
        return True
    return rule.source_topic_id == topic_id


def match_rules(
    rules: Iterable[ForwardingRule], chat_id: int, topic_id: Optional[int]
) -> List[ForwardingRule]:
    """Return the rules that apply to a message, preserving input order."""

    return [rule for rule in rules if rule_matches(rule, chat_id, topic_id)]
