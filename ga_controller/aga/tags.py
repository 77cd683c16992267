"""
Tag computation for accelerators.
"""

from typing import Dict, FrozenSet, Iterable, Mapping, Optional
from ..errors import ValidationError

TAG_KEY_CLUSTER = "elbv2.k8s.aws/cluster"
TAG_KEY_STACK = "aga.k8s.aws/stack"
TAG_KEY_RESOURCE = "aga.k8s.aws/resource"

# Keys the controller writes itself to track what it owns
TRACKING_TAG_KEYS = frozenset({TAG_KEY_CLUSTER, TAG_KEY_STACK, TAG_KEY_RESOURCE})


class TagHelper:
    """
    Merges the controller's default tags with the tags a user sets on a GlobalAccelerator.

    Args:
        external_managed_tags: Tag keys managed outside the controller that users may not set
        default_tags: Tags applied to every accelerator
        default_tags_low_priority: When True user tags win over default tags on conflict
    """

    def __init__(self, external_managed_tags: Optional[Iterable[str]] = None,
                 default_tags: Optional[Mapping[str, str]] = None,
                 default_tags_low_priority: bool = False):
        self.external_managed_tags: FrozenSet[str] = frozenset(external_managed_tags or ())
        self.default_tags: Dict[str, str] = dict(default_tags or {})
        self.default_tags_low_priority = default_tags_low_priority

    def get_accelerator_tags(self, user_tags: Optional[Mapping[str, str]]) -> Dict[str, str]:
        """
        Compute the tags for an accelerator.

        Raises:
            ValidationError: If a user tag collides with an external managed or tracking tag key
        """
        user_tags = dict(user_tags or {})
        self._validate(user_tags)
        if self.default_tags_low_priority:
            return {**self.default_tags, **user_tags}
        return {**user_tags, **self.default_tags}

    def _validate(self, user_tags: Mapping[str, str]):
        for key in sorted(user_tags):
            if key in self.external_managed_tags:
                raise ValidationError(f"external managed tag key {key} cannot be specified")
            if key in TRACKING_TAG_KEYS:
                raise ValidationError(f"tag key {key} is reserved for the controller")
