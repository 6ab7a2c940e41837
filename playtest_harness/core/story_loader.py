"""Story loader for playtest runs.

A story file bundles what a session needs from the authoring side: the
story reference, the narrator system prompt under test and an optional
story guide. Files live in config/stories/ or anywhere on disk.
"""

from pathlib import Path
from typing import Dict, Optional

import structlog
import yaml
from pydantic import BaseModel, Field

from playtest_harness.domain.models.agent import StoryContext

log = structlog.get_logger(__name__)

STORIES_DIR = Path(__file__).parent.parent.parent / "config" / "stories"


class StoryDefinition(BaseModel):
    """Validated story file."""

    id: str
    title: str
    setting: str = ""
    genre: str = ""
    system_prompt: str = Field(..., min_length=1)
    story_guide: str = ""

    def to_context(self) -> StoryContext:
        return StoryContext(
            story_id=self.id, title=self.title, setting=self.setting, genre=self.genre
        )


def list_stories(stories_dir: Optional[Path] = None) -> Dict[str, str]:
    """Map story id -> title for every story file in stories_dir."""
    stories_dir = stories_dir or STORIES_DIR
    if not stories_dir.exists():
        return {}

    stories = {}
    for story_file in sorted(stories_dir.glob("*.yaml")):
        try:
            with open(story_file) as f:
                data = yaml.safe_load(f)
            stories[data.get("id", story_file.stem)] = data.get("title", story_file.stem)
        except (OSError, yaml.YAMLError, AttributeError) as e:
            log.warning("failed_to_load_story", file=str(story_file), error=str(e))
    return stories


def load_story(story: str, stories_dir: Optional[Path] = None) -> StoryDefinition:
    """Load a story by id (from stories_dir) or by path to a YAML file.

    Raises:
        FileNotFoundError: No such story
        ValueError: If story validation fails
    """
    path = Path(story)
    if path.suffix not in (".yaml", ".yml"):
        path = (stories_dir or STORIES_DIR) / f"{story}.yaml"

    if not path.exists():
        raise FileNotFoundError(
            f"Story file not found: {path}\n"
            f"Available stories: {', '.join(list_stories(stories_dir).keys())}"
        )

    with open(path) as f:
        data = yaml.safe_load(f)

    definition = StoryDefinition(**data)
    log.debug("story_loaded", story_id=definition.id, title=definition.title)
    return definition
