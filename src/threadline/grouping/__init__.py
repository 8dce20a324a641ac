"""threadline display grouping."""

from threadline.grouping.siblings import SiblingGrouper, expand_responses, sibling_id
from threadline.grouping.turns import group_turns

__all__ = ["SiblingGrouper", "expand_responses", "group_turns", "sibling_id"]
