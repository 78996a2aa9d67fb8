"""
Preset Catalog - Preset key to directive lookup backed by JSON files
"""

import json
import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from mediaforge.config.settings import settings
from mediaforge.services.observability import logger


class Preset(BaseModel):
    """Directive bundle selected by a preset key"""

    key: str
    prompt: str = Field(..., min_length=1)
    negative_prompt: str = ""
    strength: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    model: Optional[str] = None


class PresetCatalog:
    """
    Load presets from a directory of JSON files, one preset per file
    """

    def __init__(self, preset_dir: Optional[str] = None):
        """
        Initialize preset catalog

        Args:
            preset_dir: Directory containing preset JSON files
        """
        self.preset_dir = preset_dir or settings.presets_dir
        self._presets: Optional[Dict[str, Preset]] = None

    def load_all(self) -> Dict[str, Preset]:
        """
        Load all presets from directory

        Returns:
            Dictionary mapping preset key to Preset
        """
        presets: Dict[str, Preset] = {}

        if not os.path.isdir(self.preset_dir):
            return presets

        for filename in sorted(os.listdir(self.preset_dir)):
            if not filename.endswith(".json"):
                continue
            filepath = os.path.join(self.preset_dir, filename)
            try:
                with open(filepath, "r", encoding="utf-8") as f:
                    data = json.load(f)
                preset = Preset(**data)
            except (OSError, ValueError, ValidationError) as e:
                # Log error but continue loading other presets
                logger.warning("preset_load_failed", filename=filename, error=str(e))
                continue
            presets[preset.key] = preset

        return presets

    @property
    def presets(self) -> Dict[str, Preset]:
        if self._presets is None:
            self._presets = self.load_all()
            logger.info("presets_loaded", count=len(self._presets), preset_dir=self.preset_dir)
        return self._presets

    def lookup(self, preset_key: str) -> Optional[Preset]:
        """Preset for ``preset_key``, or None when the key is unknown"""
        return self.presets.get(preset_key)
