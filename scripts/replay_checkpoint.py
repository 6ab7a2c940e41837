#!/usr/bin/env python3
"""
Replay a session from a checkpoint, optionally under a modified configuration.

With any override the checkpoint is branched: the run continues under a new
session id whose checkpoints record the parent session, turn and reason.
Without overrides the original session is resumed in place.

Usage:
    python scripts/replay_checkpoint.py --session abc123 --list
    python scripts/replay_checkpoint.py --session abc123 --turn 12 --temperature 0.9
    python scripts/replay_checkpoint.py sessions/abc123/turn-012.json --narrator-model x-ai/grok-4
    python scripts/replay_checkpoint.py --session abc123 --system-prompt-file prompts/v2.txt
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

from playtest_harness.core.archetype_loader import load_all_archetypes
from playtest_harness.core.config import load_harness_config, settings
from playtest_harness.core.exceptions import CheckpointError
from playtest_harness.llm.client import build_default_registry
from playtest_harness.persistence.checkpoint_store import (
    CheckpointStore,
    ReplayOverrides,
    build_storage,
)
from playtest_harness.services.session_service import SessionService

DEFAULT_OUTPUT_DIR = Path("results")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay or branch a checkpointed session")
    parser.add_argument("location", nargs="?", help="Checkpoint file path or location")
    parser.add_argument("--session", help="Session id (with --turn, or latest turn)")
    parser.add_argument("--turn", type=int, help="Checkpoint turn (default: latest)")
    parser.add_argument("--list", action="store_true", help="List checkpointed turns")

    overrides = parser.add_argument_group("overrides (any of these creates a branch)")
    overrides.add_argument("--system-prompt-file", type=Path)
    overrides.add_argument("--story-guide-file", type=Path)
    overrides.add_argument("--narrator-model")
    overrides.add_argument("--temperature", type=float)
    overrides.add_argument("--max-tokens", type=int)
    overrides.add_argument("--max-turns", type=int)

    parser.add_argument("--branch-id", help="Session id for the branch (generated when omitted)")
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=DEFAULT_OUTPUT_DIR,
        help=f"Directory for result JSON (default: {DEFAULT_OUTPUT_DIR})",
    )
    return parser.parse_args()


def build_overrides(args: argparse.Namespace) -> ReplayOverrides:
    return ReplayOverrides(
        system_prompt=args.system_prompt_file.read_text() if args.system_prompt_file else None,
        story_guide=args.story_guide_file.read_text() if args.story_guide_file else None,
        narrator_model=args.narrator_model,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
        max_turns=args.max_turns,
    )


async def main() -> int:
    args = parse_args()
    store = CheckpointStore(build_storage(settings))

    if args.list:
        if not args.session:
            print("--list needs --session")
            return 1
        turns = await store.list_turns(args.session)
        print(f"Checkpoints for {args.session}: {', '.join(map(str, turns)) or 'none'}")
        return 0

    try:
        if args.location:
            checkpoint = await store.load_location(args.location)
        elif args.session and args.turn is not None:
            checkpoint = await store.load(args.session, args.turn)
        elif args.session:
            checkpoint = await store.load_latest(args.session)
        else:
            print("Give a checkpoint location or --session")
            return 1
    except CheckpointError as e:
        print(f"Cannot load checkpoint: {e.message}")
        return 1

    print(f"Loaded {checkpoint.session_id} at turn {checkpoint.turn}")
    if checkpoint.lineage:
        print(
            f"  Branch of {checkpoint.lineage.parent_session_id} "
            f"turn {checkpoint.lineage.parent_turn} ({checkpoint.lineage.branch_reason})"
        )

    archetypes_dir = settings.config_dir / "archetypes"
    service = SessionService(
        config=settings,
        registry=build_default_registry(settings),
        store=store,
        harness_config=load_harness_config(settings.config_dir / "harness_config.yaml"),
        archetypes=load_all_archetypes(archetypes_dir if archetypes_dir.exists() else None),
    )

    overrides = build_overrides(args)
    if overrides.is_empty():
        print("No overrides: resuming in place")
        result = await service.resume_session(checkpoint)
    else:
        print(f"Branching: {overrides.describe()}")
        result = await service.branch_session(checkpoint, overrides, args.branch_id)

    args.output.mkdir(parents=True, exist_ok=True)
    output_path = args.output / f"{result.session_id}.json"
    output_path.write_text(result.model_dump_json(indent=2))

    print(f"\nSession {result.session_id}: {result.outcome.value}")
    print(f"Final turn: {result.final_turn}")
    print(f"Cost: ${result.cost_breakdown.total_cost_usd:.4f}")
    if result.error:
        print(f"Error: {result.error}")
    print(f"Result saved to: {output_path}")
    return 0 if result.outcome.value != "failed" else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
