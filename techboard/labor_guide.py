"""
Labor guide lookups: which skill level a labor operation requires.
"""
from collections.abc import Mapping

from techboard.models import SkillRating, coerce_skill_rating

SKILL_LEVEL_LABELS: dict[SkillRating, tuple[str, str]] = {
    SkillRating.A: (
        "Expert Level",
        "Can handle any job including complex diagnostics",
    ),
    SkillRating.B: (
        "Advanced Level",
        "Can handle most repairs, but not complex diagnostics",
    ),
    SkillRating.C: ("Basic Level", "Basic maintenance only"),
}

DEFAULT_SKILL_LEVELS = {
    "diagnostic": "A",
    "engine_repair": "A",
    "transmission": "A",
    "electrical": "A",
    "brakes": "B",
    "suspension": "B",
    "ac": "B",
    "oil_change": "C",
    "tire_rotation": "C",
    "basic_maintenance": "C",
}

ASSIGNMENT_PRIORITIES = [
    "1. Skill level match (must meet or exceed requirement)",
    "2. Specialty match (if required)",
    "3. Current availability",
    "4. Load balancing (prefer techs with fewer hours today)",
]


class LaborGuide:
    def __init__(
        self,
        skill_levels: Mapping[str, str | SkillRating] | None = None,
        default_level: str | SkillRating = SkillRating.B,
    ) -> None:
        self._levels = {
            op: coerce_skill_rating(level)
            for op, level in (skill_levels or DEFAULT_SKILL_LEVELS).items()
        }
        self.default_level = coerce_skill_rating(default_level)

    def skill_level_for(self, operation: str | None) -> SkillRating:
        if operation is None:
            return self.default_level
        return self._levels.get(operation, self.default_level)

    def operations_for(self, rating: SkillRating) -> list[str]:
        """Operations a technician with ``rating`` may be given."""
        return [
            op
            for op, level in self._levels.items()
            if rating.satisfies(level)
        ]

    def assignment_rules(self) -> dict:
        rules = {}
        for rating in SkillRating:
            label, description = SKILL_LEVEL_LABELS[rating]
            rules[rating.value] = {
                "label": label,
                "description": description,
                "canHandle": self.operations_for(rating),
                "technicianRatings": [
                    r.value for r in SkillRating if r.satisfies(rating)
                ],
            }
        return {
            "skillLevelRules": rules,
            "assignmentPriorities": list(ASSIGNMENT_PRIORITIES),
        }
