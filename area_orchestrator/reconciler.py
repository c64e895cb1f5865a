"""Template reconciliation.

Combines the template catalog, the connection registry, and the user's
automation instances into one derived view per template.
"""

from __future__ import annotations

from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

from .models import TemplateView

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .models import AutomationInstance, AutomationTemplate
    from .registry import ConnectionRegistry


class MatchStrategy(StrEnum):
    """How an existing instance is associated with a template."""

    TEMPLATE_ID = "template_id"
    NAME = "name"


class TemplateReconciler:
    """Compute per-template ``connected_map``, ``can_activate`` and instance."""

    def __init__(self, match: MatchStrategy = MatchStrategy.TEMPLATE_ID) -> None:
        self.match = match

    def recompute(
        self,
        templates: Iterable[AutomationTemplate],
        instances: Sequence[AutomationInstance],
        registry: ConnectionRegistry,
    ) -> list[TemplateView]:
        """Build a fresh view for every template.

        Nothing passed in is mutated.
        """
        return [
            TemplateView(
                template=template,
                connected_map=MappingProxyType(
                    registry.connected_map(template.required_services)
                ),
                instance=self.find_instance(template, instances),
            )
            for template in templates
        ]

    def find_instance(
        self,
        template: AutomationTemplate,
        instances: Sequence[AutomationInstance],
    ) -> AutomationInstance | None:
        """Return the instance created from ``template``, if any.

        With TEMPLATE_ID, an instance carrying a template id only matches its
        own template; instances without one fall back to a name match.
        """
        candidates: Iterable[AutomationInstance] = instances
        if self.match is MatchStrategy.TEMPLATE_ID:
            for instance in instances:
                if instance.template_id == template.id:
                    return instance
            candidates = [i for i in instances if i.template_id is None]

        return next((i for i in candidates if template.name in i.name), None)
