import logging
from collections import namedtuple

from .errors import StoreError

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "Other"

CategoryRule = namedtuple("CategoryRule", ["category", "keyword", "case_sensitive"])


def as_rule(value):
    if isinstance(value, CategoryRule):
        return value
    if isinstance(value, dict):
        return CategoryRule(value["category"], value["keyword"], bool(value.get("case_sensitive")))
    category, keyword, case_sensitive = value
    return CategoryRule(category, keyword, bool(case_sensitive))


def order_rules(rules):
    """Sort rules by (category, keyword) so the first match is the same on every backend."""
    return sorted((as_rule(rule) for rule in rules or []), key=lambda rule: (rule.category, rule.keyword))


def rule_matches(rule, description):
    if rule.case_sensitive:
        return rule.keyword in description
    return rule.keyword.upper() in description.upper()


def match_category(description, rules):
    for rule in rules:
        if rule_matches(rule, description or ""):
            return rule.category
    return FALLBACK_CATEGORY


class Categorizer:
    """Assigns one category per description from a fixed rule snapshot.

    The snapshot is taken once and reused for every row of an import, so
    concurrent rule edits never change the outcome halfway through a file.
    """

    def __init__(self, rules=None):
        self.rules = order_rules(rules)

    @classmethod
    def from_provider(cls, provider):
        try:
            rules = provider.get_ordered_category_rules()
        except StoreError as exc:
            logger.warning("Category rules unavailable, falling back to %r: %s", FALLBACK_CATEGORY, exc)
            rules = []
        return cls(rules)

    def categorize(self, description):
        return match_category(description, self.rules)

    def __call__(self, description):
        return self.categorize(description)
