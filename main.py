#!/usr/bin/env python3
"""Bot conversation CLI."""

import argparse
import asyncio
import logging
import sys

from config.settings import load_settings
from config.conversation import ConfigurationError, ConversationOverrides, HistoryMode, Topology
from schemas.conversation import ReviewAction, ReviewDecision, RunResult
from orchestrator import ConversationEngine, ConversationAlreadyActiveError
from remote.adapter import RemoteControlAdapter


def _ask(question: str) -> str:
    return input(question)


async def console_review(turn: int, instruction: str) -> ReviewDecision:
    """Show the instruction and let the operator send, edit or stop."""
    print("\n" + "=" * 60)
    print(f"REVIEW TURN {turn}")
    print("=" * 60 + "\n")
    print(instruction)
    print()

    while True:
        choice = (await asyncio.to_thread(_ask, "[s]end / [e]dit / s[t]op? ")).strip().lower()
        if choice in ("", "s", "send"):
            return ReviewDecision(action=ReviewAction.SEND)
        if choice in ("t", "stop"):
            return ReviewDecision(action=ReviewAction.STOP)
        if choice in ("e", "edit"):
            text = await asyncio.to_thread(_ask, "New instruction (empty stops): ")
            return ReviewDecision(action=ReviewAction.EDIT, text=text)
        print("Please answer s, e or t.")


def print_result(result: RunResult):
    print("\n" + "=" * 60)
    print(f"CONVERSATION {result.conversation_id}")
    print("=" * 60 + "\n")
    for exchange in result.exchanges:
        print(f"--- Turn {exchange.turn} ---")
        print(f"Instruction:\n{exchange.instruction}\n")
        print(f"Reply:\n{exchange.reply.text}\n")
    print(f"Outcome: {result.outcome.value} after {result.turns} turns")
    if result.error:
        print(f"Error: {result.error}")
    if result.log_file_path:
        print(f"Transcript: {result.log_file_path}")


async def run(args: argparse.Namespace) -> RunResult:
    settings = load_settings(args.config)
    engine = ConversationEngine.from_settings(settings, review_handler=console_review)

    adapter = None
    if engine.channel is not None and settings.telegram.allowed_user_ids:
        adapter = RemoteControlAdapter(engine, engine.channel)
        await adapter.attach()

    overrides = ConversationOverrides(
        max_turns=args.max_turns,
        topology=Topology(args.topology) if args.topology else None,
        history_mode=HistoryMode(args.history_mode) if args.history_mode else None,
    )
    try:
        return await engine.start(args.goal, args.description, args.profile, overrides)
    finally:
        if adapter is not None:
            await adapter.detach()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Bot Conversation - a driver model works toward a goal with a responder"
    )
    parser.add_argument(
        "--goal",
        "-g",
        type=str,
        help="What the conversation should achieve"
    )
    parser.add_argument(
        "--description",
        "-d",
        type=str,
        default="",
        help="Optional background for the driver"
    )
    parser.add_argument(
        "--profile",
        "-p",
        type=str,
        help="Named conversation profile from the config file"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="YAML settings file (default: config.yaml)"
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        help="Turn limit override"
    )
    parser.add_argument(
        "--topology",
        type=str,
        choices=[t.value for t in Topology],
        help="Conversation topology override"
    )
    parser.add_argument(
        "--history-mode",
        type=str,
        choices=[m.value for m in HistoryMode],
        help="History mode override"
    )
    parser.add_argument(
        "--list-profiles",
        action="store_true",
        help="List configured profiles and exit"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_profiles:
        settings = load_settings(args.config)
        if not settings.profiles:
            print("No profiles configured.")
        for key, profile in sorted(settings.profiles.items()):
            print(f"{key}: {profile.label or key}")
        return

    if not args.goal:
        parser.error("--goal is required")

    try:
        result = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (ConfigurationError, ConversationAlreadyActiveError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error running conversation: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    print_result(result)
    if result.error:
        sys.exit(1)


if __name__ == "__main__":
    main()
