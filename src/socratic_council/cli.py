"""
Command-line interface for Socratic Council.

Runs a council session against the providers configured in the environment
and prints the discussion as it streams.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from socratic_council.adapters.router import ProviderRouter
from socratic_council.config import PROVIDER_KEY_VARS, BindingRegistry, SessionConfig
from socratic_council.memory.inmemory import InMemoryTranscriptStore
from socratic_council.orchestrator.events import EventType, SessionEvent
from socratic_council.orchestrator.session import SessionController
from socratic_council.protocol.message import COUNCIL_ORDER, PARTICIPANT_NAMES, ParticipantId


class ConsolePrinter:
    """Event handler that renders a session to stdout."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self._streaming: Optional[str] = None

    def __call__(self, event: SessionEvent) -> None:
        payload = event.payload

        if event.type == EventType.MESSAGE_CHUNK:
            if self._streaming != payload["message_id"]:
                self._streaming = payload["message_id"]
                name = PARTICIPANT_NAMES[ParticipantId(payload["participant_id"])]
                self.stream.write(f"\n[{name}] ")
            self.stream.write(payload["content"])

        elif event.type == EventType.MESSAGE_COMPLETE:
            if self._streaming == payload["message_id"]:
                self.stream.write("\n")
                self._streaming = None

        elif event.type == EventType.CONFLICT_DETECTED:
            a, b = payload["pair"]
            self.stream.write(f"\n*** Conflict: {a} vs {b} (score {payload['raw_score']})\n")

        elif event.type == EventType.DUOLOGUE_STARTED:
            self.stream.write(f"*** Duo-logue for {payload['remaining_turns']} turns: {' & '.join(payload['participants'])}\n")

        elif event.type == EventType.DUOLOGUE_ENDED:
            self.stream.write(f"*** Duo-logue ended ({payload['reason']})\n")

        elif event.type == EventType.ERROR:
            self.stream.write(f"\n! {payload['kind']}: {payload['detail']}\n")

        self.stream.flush()


def print_bindings(bindings: BindingRegistry) -> None:
    """Show which council members can speak."""
    print(f"{'Participant':<12} {'Provider':<10} {'Model':<28} Usable")
    for pid in COUNCIL_ORDER:
        config = bindings.config_for(pid)
        usable = "yes" if bindings.is_usable(pid) else f"no (set {PROVIDER_KEY_VARS.get(config.provider, '?')})"
        print(f"{config.name:<12} {config.provider:<10} {config.model:<28} {usable}")


async def run_session(args: argparse.Namespace) -> int:
    """Run one council session to completion."""
    config = SessionConfig(
        topic=args.topic,
        max_turns=args.max_turns,
        speakers_per_turn=args.speakers,
        seed=args.seed,
        fairness_enabled=args.fairness,
    )
    bindings = BindingRegistry.from_env()
    if not bindings.usable():
        print("No council member has a usable completion binding.")
        print_bindings(bindings)

    store = InMemoryTranscriptStore()
    controller = SessionController(
        config,
        ProviderRouter(bindings),
        bindings=bindings,
        transcript_store=store,
    )
    controller.subscribe(ConsolePrinter())

    try:
        snapshot = await controller.start()
    except asyncio.CancelledError:
        controller.stop()
        snapshot = controller.snapshot()

    print(f"\nSession {snapshot.status.value} after {snapshot.turn_number} turns.")
    print(f"Estimated cost: ${snapshot.costs.total_estimated_usd:.4f}")
    for pid, cost in snapshot.costs.participants.items():
        if cost.input_tokens or cost.output_tokens:
            priced = "" if cost.pricing_available else " (unpriced)"
            print(f"  {PARTICIPANT_NAMES[pid]}: {cost.input_tokens} in / {cost.output_tokens} out{priced}")

    if args.export:
        with open(args.export, "w") as f:
            f.write(await store.export_session(controller.session_id))
        print(f"Transcript exported to {args.export}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Socratic Council CLI")
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run a council session")
    run_parser.add_argument("--topic", type=str, required=True, help="Discussion topic")
    run_parser.add_argument("--max-turns", type=int, default=50, help="Turn limit")
    run_parser.add_argument("--speakers", type=int, default=1, help="Speakers dispatched per turn")
    run_parser.add_argument("--seed", type=int, default=None, help="Seed for bidding randomness")
    run_parser.add_argument("--fairness", action="store_true", help="Apply speaking-balance adjustments")
    run_parser.add_argument("--export", type=str, default=None, help="Write the transcript as JSON to this path")

    # Bindings command
    subparsers.add_parser("bindings", help="List which council members are usable")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the ``socratic-council`` command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "run":
        try:
            return asyncio.run(run_session(args))
        except KeyboardInterrupt:
            print("\nInterrupted.")
            return 130
    elif args.command == "bindings":
        print_bindings(BindingRegistry.from_env())
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
