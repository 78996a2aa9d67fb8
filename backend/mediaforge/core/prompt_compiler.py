"""
Prompt Compiler - Jinja2-based directive composition
"""

import random
from typing import Any, Dict, List, Optional
from jinja2 import Environment, BaseLoader
from pydantic import BaseModel

from mediaforge.config.constants import (
    STORY_CONSISTENCY_LOCK,
    STORY_NEGATIVE_DRIFT,
    STORY_QUALITY_BOOST,
)


class CompiledShot(BaseModel):
    """Directive sent to the provider for one story shot"""

    index: int
    name: str
    prompt: str
    negative_prompt: str
    seed: int


class PromptCompiler:
    """
    Compile story shot directives and negative directives
    """

    # Pieces are joined with ". " and empty pieces are dropped
    SHOT_PROMPT_TEMPLATE = (
        "{{ [directive, shot_add, quality_boost, consistency_lock]"
        " | map('trim') | select | join('. ') }}"
    )

    NEGATIVE_PROMPT_TEMPLATE = (
        "{{ [negative, drift] | map('trim') | select | join(', ') }}"
    )

    # Seeds of consecutive shots are this far apart
    SEED_STRIDE = 101

    def __init__(self):
        """Initialize prompt compiler"""
        self.jinja_env = Environment(loader=BaseLoader())

    def compile_story_shot(
        self,
        directive: str,
        shot: Dict[str, Any],
        index: int,
        negative_directive: Optional[str] = None,
        base_seed: int = 0,
    ) -> CompiledShot:
        """
        Compile the directive for one story shot

        Args:
            directive: Job-level directive
            shot: Shot entry with "name" and "add" (the shot's fragment)
            index: 0-based shot position
            negative_directive: Job-level negative directive
            base_seed: Seed of the first shot

        Returns:
            CompiledShot
        """
        prompt = self._render_template(
            self.SHOT_PROMPT_TEMPLATE,
            {
                "directive": (directive or "").rstrip(". "),
                "shot_add": (shot.get("add") or "").rstrip(". "),
                "quality_boost": STORY_QUALITY_BOOST,
                "consistency_lock": STORY_CONSISTENCY_LOCK,
            },
        )
        return CompiledShot(
            index=index,
            name=shot.get("name") or f"shot_{index + 1}",
            prompt=prompt,
            negative_prompt=self.compile_negative_prompt(negative_directive, story=True),
            seed=self.shot_seed(base_seed, index),
        )

    def compile_story_shots(
        self,
        directive: str,
        shots: List[Dict[str, Any]],
        negative_directive: Optional[str] = None,
        base_seed: Optional[int] = None,
    ) -> List[CompiledShot]:
        """Compile every shot of a story, in order"""
        if base_seed is None:
            base_seed = self._generate_seed()
        return [
            self.compile_story_shot(directive, shot, i, negative_directive, base_seed)
            for i, shot in enumerate(shots)
        ]

    def compile_negative_prompt(self, negative_directive: Optional[str], story: bool = False) -> str:
        """
        Compile a negative directive; story shots always carry the drift terms
        """
        return self._render_template(
            self.NEGATIVE_PROMPT_TEMPLATE,
            {
                "negative": negative_directive or "",
                "drift": STORY_NEGATIVE_DRIFT if story else "",
            },
        )

    def shot_seed(self, base_seed: int, index: int) -> int:
        return (base_seed + index * self.SEED_STRIDE) % (2**31 - 1)

    def _generate_seed(self) -> int:
        """
        Generate random seed for generation

        Returns:
            Random seed integer
        """
        return random.randint(1, 2**31 - 1)

    def _render_template(
        self,
        template_string: str,
        context: Dict[str, Any],
    ) -> str:
        """
        Render Jinja2 template with context

        Args:
            template_string: Template string
            context: Template context variables

        Returns:
            Rendered string
        """
        template = self.jinja_env.from_string(template_string)
        return template.render(**context)
