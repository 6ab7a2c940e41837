"""Archetype loader for simulated player generation.

Loads archetype definitions from YAML files in config/archetypes/.
Each archetype is a play-style tendency (70-80% normal engagement with a
20-30% quirk) plus the default model that voices it.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml
from pydantic import BaseModel, Field

log = structlog.get_logger(__name__)

# Module-level cache (archetypes don't change at runtime)
_cache: Dict[str, Dict[str, Any]] = {}

ARCHETYPES_DIR = Path(__file__).parent.parent.parent / "config" / "archetypes"


class Archetype(BaseModel):
    """Validated archetype configuration.

    Attributes:
        id: Unique archetype identifier
        name: Human-readable archetype name
        style: One-line play style
        context: Everyday-life context that grounds the player
        patterns: Behavior patterns the player agent follows
        quirk_frequency: Fraction of responses colored by the quirk
        tests_for: Narrator qualities this archetype stresses
        model: Default model id for agents of this archetype
    """

    id: str = Field(..., description="Unique archetype identifier")
    name: str = Field(..., description="Human-readable archetype name")
    style: str = Field(..., description="One-line play style")
    context: str = Field(default="", description="Everyday-life context")
    patterns: List[str] = Field(default_factory=list)
    quirk_frequency: float = Field(default=0.2, ge=0.0, le=1.0)
    tests_for: List[str] = Field(default_factory=list)
    model: str = Field(..., description="Default model id")


def list_archetypes(archetypes_dir: Optional[Path] = None) -> Dict[str, str]:
    """List all available archetypes.

    Returns:
        Dict mapping archetype_id to archetype name, sorted by id
    """
    archetypes_dir = archetypes_dir or ARCHETYPES_DIR
    if not archetypes_dir.exists():
        return {}

    archetypes = {}
    for archetype_file in sorted(archetypes_dir.glob("*.yaml")):
        try:
            with open(archetype_file) as f:
                data = yaml.safe_load(f)
            archetypes[data.get("id", archetype_file.stem)] = data.get(
                "name", archetype_file.stem
            )
        except (OSError, yaml.YAMLError, AttributeError) as e:
            log.warning(
                "failed_to_load_archetype", file=str(archetype_file), error=str(e)
            )

    return archetypes


def load_archetype(archetype_id: str, archetypes_dir: Optional[Path] = None) -> Archetype:
    """Load an archetype configuration from YAML.

    Args:
        archetype_id: Archetype identifier (e.g., "questioner")
        archetypes_dir: Override directory (cache is bypassed when given)

    Returns:
        Validated Archetype instance

    Raises:
        FileNotFoundError: If archetype file not found
        ValueError: If archetype validation fails
    """
    if archetypes_dir is None and archetype_id in _cache:
        return Archetype(**_cache[archetype_id])

    directory = archetypes_dir or ARCHETYPES_DIR
    archetype_file = directory / f"{archetype_id}.yaml"

    if not archetype_file.exists():
        raise FileNotFoundError(
            f"Archetype file not found: {archetype_file}\n"
            f"Available archetypes: {', '.join(list_archetypes(directory).keys())}"
        )

    with open(archetype_file) as f:
        data = yaml.safe_load(f)

    archetype = Archetype(**data)

    if archetypes_dir is None:
        _cache[archetype_id] = data

    log.debug("archetype_loaded", archetype_id=archetype_id, name=archetype.name)
    return archetype


def load_all_archetypes(archetypes_dir: Optional[Path] = None) -> Dict[str, Archetype]:
    """Load all available archetypes.

    Returns:
        Dict mapping archetype_id to Archetype
    """
    return {
        archetype_id: load_archetype(archetype_id, archetypes_dir)
        for archetype_id in list_archetypes(archetypes_dir)
    }
