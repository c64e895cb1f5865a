"""Tests for template reconciliation."""

from __future__ import annotations

from typing import Any

import pytest

from area_orchestrator import api
from area_orchestrator.models import AutomationInstance, AutomationTemplate
from area_orchestrator.reconciler import MatchStrategy, TemplateReconciler
from area_orchestrator.registry import ConnectionRegistry

from .conftest import area_record


@pytest.fixture
def templates(sample_templates_response: dict[str, Any]) -> list[AutomationTemplate]:
    """Fixture providing the sample template catalog."""
    return api.extract_templates(sample_templates_response)


def instance(
    area_id: int, name: str, template_id: str | None = None
) -> AutomationInstance:
    """Build an instance with the given name and template id."""
    return api.extract_instance(
        area_record(area_id, name=name, template_id=template_id)
    )


class TestTemplateReconciler:
    """Tests for TemplateReconciler."""

    @pytest.mark.asyncio
    async def test_connected_map_and_can_activate(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that a template with one missing service cannot activate."""
        registry.mark_connected("YouTube")

        views = TemplateReconciler().recompute(templates, [], registry)

        assert dict(views[0].connected_map) == {"YouTube": True, "Telegram": False}
        assert views[0].can_activate is False
        assert views[0].missing_services == ["Telegram"]
        assert views[0].instance is None

    @pytest.mark.asyncio
    async def test_can_activate_follows_registry(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that recomputing after a connection flips can_activate."""
        reconciler = TemplateReconciler()
        registry.mark_connected("YouTube")
        before = reconciler.recompute(templates, [], registry)

        registry.mark_connected("Telegram")
        after = reconciler.recompute(templates, [], registry)

        assert before[0].can_activate is False
        assert after[0].can_activate is True
        assert after[1].can_activate is False

    @pytest.mark.asyncio
    async def test_can_activate_is_conjunction_of_connected_map(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that can_activate equals all() over connected_map for every view."""
        for name in ("Twitch", "Telegram"):
            registry.mark_connected(name)
            for view in TemplateReconciler().recompute(templates, [], registry):
                assert view.can_activate == all(view.connected_map.values())

    @pytest.mark.asyncio
    async def test_connected_map_is_read_only(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that views cannot be edited in place."""
        view = TemplateReconciler().recompute(templates, [], registry)[0]
        with pytest.raises(TypeError):
            view.connected_map["YouTube"] = True

    @pytest.mark.asyncio
    async def test_template_id_match(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that an instance created from a template is attached to it only."""
        instances = [
            instance(1, "YouTube to Telegram", template_id="twitch_to_telegram"),
            instance(2, "Renamed", template_id="youtube_to_telegram"),
        ]

        views = TemplateReconciler().recompute(templates, instances, registry)

        assert views[0].instance.id == 2
        assert views[1].instance.id == 1

    @pytest.mark.asyncio
    async def test_template_id_falls_back_to_name(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that instances without a template id match by name."""
        instances = [instance(3, "My Twitch to Telegram alerts")]

        views = TemplateReconciler().recompute(templates, instances, registry)

        assert views[0].instance is None
        assert views[1].instance.id == 3

    @pytest.mark.asyncio
    async def test_name_strategy_matches_substring(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that the name strategy ignores template ids."""
        instances = [
            instance(1, "YouTube to Telegram", template_id="twitch_to_telegram"),
        ]

        views = TemplateReconciler(MatchStrategy.NAME).recompute(
            templates, instances, registry
        )

        assert views[0].instance.id == 1
        assert views[1].instance is None

    @pytest.mark.asyncio
    async def test_inputs_are_not_mutated(
        self, templates: list[AutomationTemplate], registry: ConnectionRegistry
    ) -> None:
        """Test that recomputing leaves the inputs unchanged."""
        instances = [instance(1, "YouTube to Telegram")]
        snapshot = (list(templates), list(instances))

        TemplateReconciler().recompute(templates, instances, registry)

        assert (templates, instances) == snapshot
