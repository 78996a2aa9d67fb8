"""
Unit Tests for PromptCompiler
"""

from mediaforge.config.constants import (
    STORY_CONSISTENCY_LOCK,
    STORY_NEGATIVE_DRIFT,
    STORY_QUALITY_BOOST,
)
from mediaforge.core.prompt_compiler import PromptCompiler

from fixtures import SAMPLE_SHOT_LIST


class TestStoryShots:
    """Story shot directive composition"""

    def test_shot_prompt_joins_parts(self):
        compiler = PromptCompiler()

        shot = compiler.compile_story_shot(
            "cyberpunk hero, neon rain.",
            {"name": "wide", "add": "wide shot on a rooftop at dusk"},
            0,
            base_seed=1000,
        )

        assert shot.prompt == (
            f"cyberpunk hero, neon rain. wide shot on a rooftop at dusk. "
            f"{STORY_QUALITY_BOOST}. {STORY_CONSISTENCY_LOCK}"
        )
        assert shot.name == "wide"
        assert shot.seed == 1000

    def test_shot_without_name(self):
        compiler = PromptCompiler()

        shot = compiler.compile_story_shot("hero", {"add": "close-up"}, 2, base_seed=1)

        assert shot.name == "shot_3"

    def test_story_negative_always_carries_drift_terms(self):
        compiler = PromptCompiler()

        without = compiler.compile_story_shot("hero", {"add": "wide"}, 0, base_seed=1)
        with_neg = compiler.compile_story_shot("hero", {"add": "wide"}, 0, negative_directive="blurry", base_seed=1)

        assert without.negative_prompt == STORY_NEGATIVE_DRIFT
        assert with_neg.negative_prompt == f"blurry, {STORY_NEGATIVE_DRIFT}"

    def test_seeds_advance_by_fixed_stride(self):
        compiler = PromptCompiler()

        shots = compiler.compile_story_shots("hero", SAMPLE_SHOT_LIST, base_seed=1000)

        assert [s.seed for s in shots] == [1000, 1101, 1202]
        assert [s.index for s in shots] == [0, 1, 2]

    def test_random_base_seed_keeps_stride(self):
        compiler = PromptCompiler()

        shots = compiler.compile_story_shots("hero", SAMPLE_SHOT_LIST[:2])

        assert 1 <= shots[0].seed < 2**31 - 1
        assert shots[1].seed == compiler.shot_seed(shots[0].seed, 1)


class TestNegativePrompt:
    def test_single_shot_negative_passthrough(self):
        compiler = PromptCompiler()

        assert compiler.compile_negative_prompt("blurry, lowres") == "blurry, lowres"

    def test_empty_negative(self):
        compiler = PromptCompiler()

        assert compiler.compile_negative_prompt(None) == ""
        assert compiler.compile_negative_prompt("   ") == ""
