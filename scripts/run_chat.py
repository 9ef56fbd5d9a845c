#!/usr/bin/env python3
"""
Chat Runner Script

Sends prompts through the Lumen AI pipeline in-process and prints the
streamed tokens, queue notices and per-request cost.

This script:
1. Builds an AIService from environment settings
2. Optionally probes the provider with a connection test
3. Submits each prompt (repeated --repeat times) to the dispatcher
4. Prints events as they arrive
5. Reports the month's usage and budget position

Usage:
    python scripts/run_chat.py "What is SSE?"               # One prompt
    python scripts/run_chat.py "Hi" --provider anthropic     # Override provider
    python scripts/run_chat.py "Hi" --repeat 3               # Watch the queue at work
    python scripts/run_chat.py --test-connection --provider xai
    python scripts/run_chat.py --usage                       # Show usage only
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from lumen_ai.config import configure_logging, get_settings
from lumen_ai.errors import BudgetExceededError, MissingCredentialError
from lumen_ai.registry.models import AIProvider
from lumen_ai.schemas.chat import ChatFeature, ChatMessage, ChatRequest, StreamEvent
from lumen_ai.service import AIService


def print_usage(service: AIService) -> None:
    """Print this month's usage and budget."""
    config = service.get_config()
    usage = config.usage
    budget = config.budget

    print("\n" + "=" * 60)
    print(f"Usage for {usage.period_key}")
    print("=" * 60)
    print(f"  Provider / model:   {config.settings.provider.value} / {config.settings.model}")
    print(f"  API key configured: {'yes' if config.has_api_key else 'no'}")
    print(f"  Prompt tokens:      {usage.prompt_tokens:,}")
    print(f"  Completion tokens:  {usage.completion_tokens:,}")
    print(f"  Estimated spend:    ${usage.estimated_cost_usd:.4f} of ${budget.limit_usd:.2f}")
    if budget.reached:
        print("  Budget REACHED")
    elif budget.warning:
        print(f"  Budget warning (>= ${budget.warning_usd:.2f})")

    if usage.feature_costs:
        print("\n  By feature:")
        for feature, cost in sorted(usage.feature_costs.items()):
            print(f"    {feature:<18} ${cost:.4f}")


async def run_chat(service: AIService, requests: list[ChatRequest]) -> int:
    """
    Submit requests and print their events until all are done.

    Returns:
        Number of requests that ended with an error
    """
    labels: dict[str, str] = {}
    failures = 0

    def _print_event(event: StreamEvent) -> None:
        nonlocal failures
        label = labels.get(event.request_id, event.request_id[:8])
        if event.queued:
            print(f"\n[{label}] {event.message}")
        elif event.token:
            print(event.token, end="", flush=True)
        elif event.done:
            if event.error:
                failures += 1
                print(f"\n[{label}] {'canceled' if event.canceled else 'failed'}: {event.error}")
            else:
                print(f"\n[{label}] done, cost ${event.estimated_cost_usd or 0:.6f}")
                if event.budget_reached:
                    print(f"[{label}] monthly budget reached")
                elif event.budget_warning:
                    print(f"[{label}] monthly budget warning")

    remove_listener = service.events.add_listener(_print_event)
    try:
        for index, request in enumerate(requests, start=1):
            try:
                request_id = service.start_chat(request).request_id
            except (MissingCredentialError, BudgetExceededError) as e:
                print(f"ERROR: {e.message}")
                return len(requests)
            labels[request_id] = f"#{index}"

        await service.dispatcher.wait_idle()
    finally:
        remove_listener()
    return failures


async def run(args: argparse.Namespace) -> int:
    service = AIService()
    try:
        if args.test_connection:
            provider = AIProvider(args.provider or service.get_config().settings.provider)
            result = await service.test_connection(provider)
            print(f"{provider.value}: {'OK' if result.ok else 'FAILED'} - {result.message}")
            return 0 if result.ok else 1

        exit_code = 0
        if args.prompt:
            request = ChatRequest(
                conversation_id="cli",
                messages=[ChatMessage(role="user", content=args.prompt)],
                max_tokens=args.max_tokens,
                temperature=args.temperature,
                feature=ChatFeature(args.feature),
                provider_override=AIProvider(args.provider) if args.provider else None,
                model_override=args.model,
            )
            failures = await run_chat(service, [request] * args.repeat)
            exit_code = 1 if failures else 0

        print_usage(service)
        return exit_code
    finally:
        await service.aclose()


def main():
    """Main entry point for the chat runner."""

    parser = argparse.ArgumentParser(
        description="Send prompts through the Lumen AI gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_chat.py "Summarize SSE in one line"
  python scripts/run_chat.py "Hi" --provider openrouter --model moonshotai/kimi-k2:free
  python scripts/run_chat.py "Hi" --repeat 3
  python scripts/run_chat.py --test-connection --provider anthropic
  python scripts/run_chat.py --usage
        """
    )

    parser.add_argument("prompt", nargs="?", help="Prompt to send")
    parser.add_argument(
        "--provider",
        choices=[p.value for p in AIProvider],
        help="Override the configured provider"
    )
    parser.add_argument("--model", help="Override the configured model")
    parser.add_argument(
        "--feature",
        choices=[f.value for f in ChatFeature],
        default=ChatFeature.CHAT.value,
        help="Feature to attribute cost to (default: chat)"
    )
    parser.add_argument("--max-tokens", type=int, help="Completion token limit")
    parser.add_argument("--temperature", type=float, help="Sampling temperature")
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Submit the prompt this many times at once"
    )
    parser.add_argument(
        "--test-connection",
        action="store_true",
        help="Probe the provider instead of chatting"
    )
    parser.add_argument(
        "--usage",
        action="store_true",
        help="Only show usage and budget"
    )

    args = parser.parse_args()

    if not args.prompt and not args.usage and not args.test_connection:
        parser.error("a prompt is required unless --usage or --test-connection is given")
    if args.repeat < 1:
        parser.error("--repeat must be at least 1")

    configure_logging(get_settings())

    print("=" * 60)
    print("Lumen AI Chat Runner")
    print("=" * 60)

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
