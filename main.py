"""QueryLoop

Simple CLI for running one query end to end.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from queryloop.config import settings
from queryloop.errors import QueryLoopError
from queryloop.models.conversation import QueryMode, UploadedFileRef
from queryloop.models.events import EventType
from queryloop.services.orchestrator import QueryContext

TERMINAL_EVENTS = {
    EventType.POLL_COMPLETED,
    EventType.POLL_FAILED,
    EventType.POLL_TIMED_OUT,
    EventType.POLL_CANCELLED,
}


def parse_file(value: str) -> UploadedFileRef:
    path, sep, url = value.partition("=")
    if not sep or not path or not url:
        raise argparse.ArgumentTypeError(f"expected PATH=URL, got {value!r}")
    return UploadedFileRef(path=path, public_url=url, file_name=Path(path).name)


def print_event(event) -> None:
    event_type = event.event
    data = event.data

    if event_type == EventType.PROVIDER_FALLBACK:
        print(f"[!] {data.get('provider') or 'search'} unavailable, answering without sources")
    elif event_type == EventType.MESSAGE_RECORDED:
        print(f"[+] Saved message ({data.get('route')}, {data.get('results_count')} sources)")
    elif event_type == EventType.GENERATION_STARTED:
        print(f"[~] Generating answer (job {data.get('job_handle')})")
    elif event_type == EventType.POLL_COMPLETED:
        print(f"[*] Answer ready after {data.get('attempts')} checks")
    elif event_type == EventType.POLL_FAILED:
        print(f"[!] {data.get('message')}")
    elif event_type == EventType.POLL_TIMED_OUT:
        print("[!] Still generating. Refresh the conversation later to see the answer.")
    elif event_type == EventType.ERROR:
        print(f"[!] Error: {data.get('message', 'Unknown error')}")


async def run_query(
    query: str,
    mode: QueryMode,
    model: str | None = None,
    files: list[UploadedFileRef] | None = None,
) -> int:
    print(f"Query: {query}")
    print("-" * 50)

    ctx = QueryContext.create()
    try:
        conversation = await ctx.submission.create_conversation(
            query, mode, model or settings.default_model, None, files
        )
        queue = ctx.events.subscribe(conversation.id)
        outcome = await ctx.orchestrator.submit(
            conversation.id, query, files, mode=mode, model=conversation.model
        )

        if outcome.poller is not None:
            while True:
                event = await queue.get()
                print_event(event)
                if event.event in TERMINAL_EVENTS:
                    break
        else:
            while not queue.empty():
                print_event(queue.get_nowait())

        refreshed = await ctx.orchestrator.refresh(conversation.id)
        answer = next((m.answer for m in refreshed.messages if m.id == outcome.message.id), None)
        print(f"\n{'=' * 50}")
        print(answer or "(no answer yet)")
        for item in outcome.message.results:
            print(f"  - {item.title} <{item.url}>")
        return 0
    except QueryLoopError as e:
        print(f"\n[!] Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        await ctx.aclose()


def main():
    parser = argparse.ArgumentParser(description="QueryLoop search and answer")
    parser.add_argument("--query", "-q", default="", help="Question to ask")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in QueryMode],
        default=QueryMode.SEARCH.value,
        help="search (quick) or research (multi-angle)",
    )
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument(
        "--file",
        action="append",
        type=parse_file,
        default=[],
        metavar="PATH=URL",
        help="Attach an uploaded file (repeatable)",
    )

    args = parser.parse_args()

    sys.exit(asyncio.run(run_query(args.query, QueryMode(args.mode), args.model, args.file)))


if __name__ == "__main__":
    main()
