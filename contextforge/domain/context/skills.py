from typing import Dict, List, Mapping, Optional
from pydantic import BaseModel, Field


class EphemeralSkill(BaseModel):
    """A toggleable methodology snippet injected after zone content"""
    id: str
    label: str
    content: str
    enabled_by_default: bool = Field(default=False)

    def render(self) -> str:
        return f"[Active Skill: {self.label}]\n{self.content}"


BRAINSTORMING_SKILL = EphemeralSkill(
    id="brainstorming",
    label="Brainstorming Methodology",
    content="""# Brainstorming Ideas Into Designs

Help turn ideas into fully formed designs through collaborative dialogue.

The user's context is already loaded into this conversation. Use it to understand
the project, domain and constraints before asking anything.

## Process

1. Review the loaded context to understand the project and domain
2. Ask clarifying questions one at a time: purpose, constraints, success criteria
3. Propose 2-3 approaches with trade-offs, leading with your recommendation
4. Present the design in sections scaled to their complexity and confirm each one

## Principles

- One question per message
- Prefer multiple choice questions when possible
- Remove unnecessary complexity from every design
- Go back and clarify when something does not make sense""",
)


class SkillRegistry:
    """Registry of ephemeral skills, rendered in registration order"""

    def __init__(self, skills: Optional[List[EphemeralSkill]] = None):
        self.skills: Dict[str, EphemeralSkill] = {}
        for skill in skills if skills is not None else [BRAINSTORMING_SKILL]:
            self.register(skill)

    def register(self, skill: EphemeralSkill):
        self.skills[skill.id] = skill

    def get(self, skill_id: str) -> Optional[EphemeralSkill]:
        return self.skills.get(skill_id)

    def default_active(self) -> Dict[str, bool]:
        return {skill_id: skill.enabled_by_default for skill_id, skill in self.skills.items()}

    def render(self, active: Mapping[str, bool]) -> List[str]:
        """Render active skills as injection snippets; unknown ids are ignored"""

        return [
            skill.render()
            for skill_id, skill in self.skills.items()
            if active.get(skill_id, False)
        ]
