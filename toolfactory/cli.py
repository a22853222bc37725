"""Command-line entry point.

Usage:
    toolfactory --source request.txt
    toolfactory --source module.md --mock --run-id demo-1
    python -m toolfactory.cli --source request.txt --config factory.yaml

Prints the RunResult as JSON on stdout. Exit status is 0 for completed runs,
2 for needs_clarification and 1 for failed runs.
"""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Optional

from toolfactory.config import load_config
from toolfactory.llm.factory import DEFAULT_MODEL, ModelRouter
from toolfactory.llm.mock import MockBackend
from toolfactory.pipeline.context import RunRequest
from toolfactory.pipeline.events import PipelineEventLog
from toolfactory.pipeline.orchestrator import ToolFactory
from toolfactory.scoring.scorer import HtmlQualityScorer
from toolfactory.stages.registry import build_stage_registry
from toolfactory.stages.schemas import TemplateType

logger = logging.getLogger(__name__)

EXIT_CODES = {"completed": 0, "failed": 1, "needs_clarification": 2}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate an interactive decision tool from a request or course material")
    parser.add_argument("--source", required=True, help="Path to the request or course material text file")
    parser.add_argument("--run-id", help="Run identifier (default: random)")
    parser.add_argument(
        "--template",
        choices=[t.value for t in TemplateType],
        help="Template pattern hint; skips template selection",
    )
    parser.add_argument(
        "--skip-template-selection",
        action="store_true",
        help="Let the builder choose the pattern itself",
    )
    parser.add_argument("--config", type=Path, help="YAML file with factory config overrides")
    parser.add_argument("--model", default=DEFAULT_MODEL, help=f"Default model (default: {DEFAULT_MODEL})")
    parser.add_argument("--mock", action="store_true", help="Use the offline mock backend")
    parser.add_argument("--output", type=Path, help="Also write the generated HTML to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    llm = MockBackend() if args.mock else ModelRouter(default_model=args.model)
    factory = ToolFactory(
        build_stage_registry(llm, qa_pass_score=config.qa_pass_score),
        config=config,
        scorer=HtmlQualityScorer(),
        event_log=PipelineEventLog(),
    )

    request = RunRequest(
        run_id=args.run_id or f"run-{uuid.uuid4().hex[:8]}",
        source_text=args.source.read_text(encoding="utf-8"),
        template_hint=TemplateType(args.template) if args.template else None,
        skip_template_selection=args.skip_template_selection,
    )

    result = await factory.process_request(request)
    await factory.wait_for_background()

    if args.output and result.artifact:
        args.output.write_text(result.artifact, encoding="utf-8")
        logger.info(f"Wrote {len(result.artifact):,} chars to {args.output}")

    print(json.dumps(result.model_dump(mode="json", exclude={"artifact"}), indent=2))
    return EXIT_CODES[result.status]


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    args.source = Path(args.source)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if not args.source.exists():
        logger.error(f"Source file not found: {args.source}")
        return 1

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
