#!/usr/bin/env python3
"""
Transhot - command-line entry point.

Usage:
    # translate the text in one image
    python main.py image <url-or-path> [--page-url URL]

    # start the web service
    python main.py server [--port 8000]
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path


def translate_image_cmd(args):
    """Run the pipeline for one image and print the translations."""
    from transhot.logging_config import init_default_logging
    from transhot.models import OutcomeStatus, VisualElement
    from transhot.pipeline import build_pipeline

    init_default_logging()

    src = args.image
    if "://" not in src and not src.startswith("data:"):
        src = Path(src).resolve().as_uri()

    async def run():
        pipeline = await build_pipeline()
        element = VisualElement(element_id="cli", tag="img", src=src, page_url=args.page_url or "")
        outcome = await pipeline.process(element)
        pipeline.state.close()
        return outcome

    outcome = asyncio.run(run())
    if args.json:
        print(json.dumps(outcome.model_dump(mode="json"), ensure_ascii=False, indent=2))
    elif outcome.success:
        if outcome.status == OutcomeStatus.SKIPPED_PROCESSED:
            print(f"(cached) {outcome.hash}")
        for entry in outcome.translations:
            print(f"- {entry.original_text}\n  -> {entry.translated_text}")
    else:
        print(f"Translation failed [{outcome.error_code}]: {outcome.error_message}", file=sys.stderr)
        if outcome.open_settings:
            print("Configure credentials: TRANSHOT_VISION_API_KEY / TRANSHOT_CHAT_API_KEY "
                  "or POST /api/v1/settings/credentials", file=sys.stderr)
    if not outcome.success:
        sys.exit(1)


def server_cmd(args):
    """Start the web service."""
    import uvicorn
    from app.main import app
    from app.deps import get_settings

    settings = get_settings()
    port = args.port or settings.port

    print(f"Starting server: http://{settings.host}:{port}")
    uvicorn.run(app, host=settings.host, port=port)


def main():
    parser = argparse.ArgumentParser(
        description="Transhot - recognize and translate text in images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py image https://example.com/comic.png
  python main.py image page.png --json
  python main.py server --port 8000
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    image_parser = subparsers.add_parser("image", help="Translate one image")
    image_parser.add_argument("image", help="Image URL or local path")
    image_parser.add_argument("--page-url", help="URL of the page that shows the image")
    image_parser.add_argument("--json", action="store_true", help="Print the full outcome as JSON")
    image_parser.set_defaults(func=translate_image_cmd)

    server_parser = subparsers.add_parser("server", help="Start the web service")
    server_parser.add_argument("-p", "--port", type=int, default=None, help="Port (default: settings)")
    server_parser.set_defaults(func=server_cmd)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
