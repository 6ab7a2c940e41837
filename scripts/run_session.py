#!/usr/bin/env python3
"""
Run one or more playtest sessions against a story.

Usage:
    python scripts/run_session.py lighthouse
    python scripts/run_session.py lighthouse --archetypes joker,questioner,wildcard --max-turns 20
    python scripts/run_session.py config/stories/lighthouse.yaml --count 8 --parallel 4
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

# Configure logging first (before importing other modules)
from playtest_harness.core.logging import configure_logging

configure_logging()

from playtest_harness.core.archetype_loader import list_archetypes, load_all_archetypes
from playtest_harness.core.config import load_harness_config, settings
from playtest_harness.core.story_loader import list_stories, load_story
from playtest_harness.domain.models.progress import ProgressEvent, ProgressKind
from playtest_harness.domain.models.session import SessionRequest, SessionResult
from playtest_harness.llm.client import build_default_registry
from playtest_harness.persistence.checkpoint_store import CheckpointStore, build_storage
from playtest_harness.services.session_service import SessionService

DEFAULT_OUTPUT_DIR = Path("results")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run automated playtest sessions")
    parser.add_argument("story", nargs="?", help="Story id (config/stories) or YAML path")
    parser.add_argument("--narrator-model", help="Narrator model id")
    parser.add_argument("--temperature", type=float, help="Narrator temperature")
    parser.add_argument("--max-tokens", type=int, help="Narrator max tokens")
    parser.add_argument(
        "--max-turns",
        type=int,
        help=f"Turn budget (default: {settings.default_max_turns})",
    )
    parser.add_argument(
        "--archetypes", help="Comma-separated archetype ids (random group when omitted)"
    )
    parser.add_argument("--group-size", type=int, help="Random group size (2-5)")
    parser.add_argument(
        "--count", type=int, default=1, help="Number of sessions to run (default: 1)"
    )
    parser.add_argument(
        "--parallel",
        type=int,
        default=settings.max_parallel_sessions,
        help=f"Sessions run at once (default: {settings.max_parallel_sessions})",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help=f"Directory for result JSON (default: {DEFAULT_OUTPUT_DIR})",
    )
    parser.add_argument(
        "--watch", action="store_true", help="Print turns as they happen (single session)"
    )
    parser.add_argument("--list", action="store_true", help="List stories and archetypes")
    return parser.parse_args()


def print_catalog() -> None:
    print("Available stories:")
    for story_id, title in list_stories(settings.config_dir / "stories").items():
        print(f"  - {story_id}: {title}")
    print("\nAvailable archetypes:")
    for archetype_id, name in list_archetypes(settings.config_dir / "archetypes").items():
        print(f"  - {archetype_id}: {name}")


def print_summary(result: SessionResult, output_path: Path) -> None:
    costs = result.cost_breakdown
    print(f"\n{'=' * 60}")
    print(f"SESSION {result.session_id}: {result.outcome.value.upper()}")
    print(f"{'=' * 60}")
    print(f"Final turn: {result.final_turn}")
    print(f"Duration: {result.duration_seconds:.1f}s")
    print(
        f"Cost: ${costs.total_cost_usd:.4f} "
        f"(narrator ${costs.narrator.cost_usd:.4f}, "
        f"players ${costs.players.cost_usd:.4f}, "
        f"classification ${costs.classification.cost_usd:.4f})"
    )
    print(f"Issues flagged: {len(result.tangents)}")
    unpaid = [m for m in result.private_moments if not m.payoff_detected]
    print(f"Private moments: {len(result.private_moments)} ({len(unpaid)} without payoff)")
    if result.player_feedback:
        feedback = result.player_feedback
        print(f"Narrator score: {feedback.narrator_score:.1f}/10, pacing {feedback.pacing_verdict}")
        for recommendation in feedback.recommendations:
            print(f"  - {recommendation}")
    if result.error:
        print(f"Error: {result.error}")
    print(f"Result saved to: {output_path}")


def print_progress(event: ProgressEvent) -> None:
    if event.kind == ProgressKind.TURN_START:
        print(f"\n--- Turn {event.turn}/{event.max_turns} ---")
    elif event.kind == ProgressKind.NARRATOR_TURN:
        print(f"NARRATOR: {event.content}")
    elif event.kind in (ProgressKind.PLAYER_TURN, ProgressKind.SPOKESPERSON_TURN):
        print(f"{event.player}: {event.content}")
    elif event.kind == ProgressKind.FAILED:
        print(f"FAILED: {event.error}")

async def main() -> int:
    args = parse_args()
    if args.list or not args.story:
        print_catalog()
        return 0 if args.list else 1

    story = load_story(args.story, settings.config_dir / "stories")
    archetypes_dir = settings.config_dir / "archetypes"
    service = SessionService(
        config=settings,
        registry=build_default_registry(settings),
        store=CheckpointStore(build_storage(settings)),
        harness_config=load_harness_config(settings.config_dir / "harness_config.yaml"),
        archetypes=load_all_archetypes(archetypes_dir if archetypes_dir.exists() else None),
    )

    archetypes = (
        [a.strip() for a in args.archetypes.split(",") if a.strip()]
        if args.archetypes
        else None
    )
    requests = [
        SessionRequest(
            story=story.to_context(),
            system_prompt=story.system_prompt,
            story_guide=story.story_guide,
            narrator_model=args.narrator_model,
            temperature=args.temperature,
            max_tokens=args.max_tokens,
            max_turns=args.max_turns,
            archetypes=archetypes,
            group_size=args.group_size,
        )
        for _ in range(args.count)
    ]

    print(f"Running {len(requests)} session(s) of \"{story.title}\"")
    if len(requests) == 1:
        on_progress = print_progress if args.watch else None
        results = [await service.run_session(requests[0], on_progress=on_progress)]
    else:
        results = await service.run_batch(requests, max_parallel=args.parallel)

    args.output.mkdir(parents=True, exist_ok=True)
    for result in results:
        output_path = args.output / f"{result.session_id}.json"
        output_path.write_text(result.model_dump_json(indent=2))
        print_summary(result, output_path)

    return 0 if all(r.outcome.value != "failed" for r in results) else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
