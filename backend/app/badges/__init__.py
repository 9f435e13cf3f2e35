"""Gamified badges earned from engagement counters."""

from .evaluator import BADGE_DEFINITIONS, BadgeDefinition, BadgeService, evaluate_badges

__all__ = [
    "BADGE_DEFINITIONS",
    "BadgeDefinition",
    "BadgeService",
    "evaluate_badges",
]
