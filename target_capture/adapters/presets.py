"""Target preset catalogue loaded from YAML."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from target_capture.core.models import TargetPreset

LOGGER = logging.getLogger(__name__)

DEFAULT_PRESETS_PATH = Path(__file__).resolve().parents[1] / "app" / "target_presets.yaml"
DEFAULT_SUGGESTION = "Measure any known dimension on your target"


class PresetCatalog:
    """Lookup of calibration presets keyed by id, in file order."""

    def __init__(self, presets: List[TargetPreset]) -> None:
        self._presets: Dict[str, TargetPreset] = {preset.id: preset for preset in presets}

    @classmethod
    def from_yaml(cls, path: Path = DEFAULT_PRESETS_PATH) -> "PresetCatalog":
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        presets: List[TargetPreset] = []
        for preset_id, values in (payload.get("presets") or {}).items():
            if not isinstance(values, dict):
                LOGGER.warning("Skipping malformed preset entry %r", preset_id)
                continue
            presets.append(TargetPreset(id=str(preset_id), **values))
        LOGGER.debug("Loaded %d target presets from %s", len(presets), path)
        return cls(presets)

    def all(self) -> List[TargetPreset]:
        return list(self._presets.values())

    def get(self, preset_id: str) -> Optional[TargetPreset]:
        return self._presets.get(preset_id)

    def suggestion(self, target_type: str) -> str:
        preset = self._presets.get(target_type)
        if preset and preset.suggestion:
            return preset.suggestion
        return DEFAULT_SUGGESTION
