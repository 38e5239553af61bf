"""
CDS Hooks Service - Card Rendering.
Turns configured card templates and one subject's rule results into cards.
"""
from __future__ import annotations
from typing import Any, Mapping, Sequence
import structlog

from .definitions import CardTemplate
from .errors import ConfigurationError
from .expressions import interpolate, resolve_expression

logger = structlog.get_logger(__name__)

DIAGNOSTIC_BINDINGS = (("errors", "Errors"), ("warnings", "Warnings"))


class CardRenderer:
    """Renders card templates in declaration order."""

    def render(self, templates: Sequence[CardTemplate], results: Mapping[str, Any]) -> list[dict[str, Any]]:
        cards: list[dict[str, Any]] = []
        for index, template in enumerate(templates):
            if template.condition_expression is not None and not self._condition_holds(template, results):
                logger.debug("card_condition_false", card_index=index,
                             condition=template.condition_expression)
                continue
            card = interpolate(template.card, results)
            for label, binding in DIAGNOSTIC_BINDINGS:
                attach_diagnostics(card, label, results.get(binding))
            cards.append(card)
        logger.info("cards_rendered", templates=len(templates), cards=len(cards))
        return cards

    @staticmethod
    def _condition_holds(template: CardTemplate, results: Mapping[str, Any]) -> bool:
        expression = template.condition_expression or ""
        if expression.split(".")[0] not in results:
            raise ConfigurationError("Hook configuration refers to non-existent conditionExpression",
                                     details={"condition": expression})
        return bool(resolve_expression(results, expression))


def attach_diagnostics(card: dict[str, Any], label: str, items: Any) -> None:
    """Report engine errors or warnings on the card's `extension` object."""
    if items is None or items == [] or items == "":
        return
    if not isinstance(items, list):
        items = [items]
    extension = card.get("extension")
    if not isinstance(extension, dict):
        extension = {}
        card["extension"] = extension
    extension[label] = items
