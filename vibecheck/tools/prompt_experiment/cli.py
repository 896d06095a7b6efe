#!/usr/bin/env python3
"""Command-line interface for running prompt experiments."""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from vibecheck.libs.config_loader import load_configs, load_default_configs, merge_configs
from vibecheck.libs.errors import PipelineError, UnexpectedError
from vibecheck.libs.llm import PydanticAIGateway
from .app import run_server
from .dataset import FolderDatasetLocator, INTAKE_FILENAME
from .pipeline import PromptExperimentPipeline

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
LOG = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Extract a complaint issue, generate prompt variants and judge them',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the full pipeline on the latest dated folder under the current directory
  vibecheck run

  # Run on a specific folder with a different model
  vibecheck run --data-root data/ --folder jan-5-2026 --model gpt-4o

  # Investigate the latest complaint
  vibecheck investigate --debug

  # Serve the stage endpoints
  vibecheck serve --port 5000
        """
    )
    parser.add_argument('--config', '-c', type=Path, action='append', default=[],
                        help='Extra YAML config file(s) merged over the defaults')
    parser.add_argument('--data-root', '-d', type=Path, default=None,
                        help='Directory holding the date-named dataset folders')
    parser.add_argument('--model', '-m', type=str, default=None,
                        help='OpenAI model to use (overrides config value)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run extract -> generate -> judge')
    run_parser.add_argument('--folder', '-f', type=str, default=None,
                            help='Dataset folder name, e.g. jan-5-2026 (default: latest)')
    run_parser.add_argument('--json', action='store_true',
                            help='Print the full run result as JSON')

    investigate_parser = subparsers.add_parser('investigate', help='Investigate a single complaint')
    investigate_parser.add_argument('--complaint', type=str, default=None)
    investigate_parser.add_argument('--transcript', type=Path, default=None,
                                    help='Text or JSON file with the conversation')
    investigate_parser.add_argument('--prompt', type=str, default=None)
    investigate_parser.add_argument('--debug', action='store_true')

    serve_parser = subparsers.add_parser('serve', help='Serve the stage endpoints over HTTP')
    serve_parser.add_argument('--host', type=str, default='127.0.0.1')
    serve_parser.add_argument('--port', type=int, default=5000)
    serve_parser.add_argument('--debug', action='store_true')
    return parser


def load_cli_configs(args: argparse.Namespace) -> dict:
    try:
        config = load_default_configs()
    except ValueError:
        config = {}
    if args.config:
        config = merge_configs(config, load_configs(*(str(p) for p in args.config)))
    return config


def _read_transcript(path: Path):
    text = path.read_text(encoding='utf-8')
    if path.suffix == '.json':
        return json.loads(text)
    return text


def print_scoreboard(result) -> None:
    run = result.run
    print(f"\n{'='*60}")
    print("Prompt Experiment Complete")
    print(f"{'='*60}")
    print(f"Run ID: {run.run_id}")
    print(f"Data folder: {run.source_folder}")
    print(f"Experiment target: {result.extraction.issues[0].issue}")
    if len(result.extraction.issues) > 1:
        print(f"Also flagged: {result.extraction.issues[1].issue}")
    print(f"Test transcript: {result.judgment.test_transcript_id}")
    print("\nScoreboard:")
    for judgment in result.judgment.judgments:
        suffix = " (timed out)" if judgment.timed_out else ""
        print(f"  {judgment.total_score:.1f}  {judgment.variant_name}{suffix}")
    print(f"\nWinner: {result.winner}")
    print(f"Summarizer: {result.judgment.summarizer_path}")
    print(f"Trace bundle: {run.trace_dir}")


def main():
    """Main entry point for the vibecheck command."""
    args = build_parser().parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = load_cli_configs(args)
    data_root = args.data_root or Path(config.get('prompt_experiment', {}).get('data_root', '.'))
    if not data_root.is_dir():
        LOG.error(f"Data root does not exist: {data_root}")
        sys.exit(1)

    locator = FolderDatasetLocator(
        data_root, config.get('prompt_experiment', {}).get('intake_filename', INTAKE_FILENAME))
    gateway = PydanticAIGateway(config, model=args.model)
    pipeline = PromptExperimentPipeline(config, gateway=gateway, locator=locator)

    if args.command == 'serve':
        run_server(pipeline, host=args.host, port=args.port, debug=args.debug)
        return

    started = time.monotonic()
    try:
        if args.command == 'run':
            result = pipeline.run(args.folder)
            if args.json:
                print(result.model_dump_json(indent=2))
            else:
                print_scoreboard(result)
        elif args.command == 'investigate':
            transcript = _read_transcript(args.transcript) if args.transcript else None
            result = pipeline.investigator.investigate(
                complaint=args.complaint, transcript=transcript,
                prompt=args.prompt, debug=args.debug,
            )
            print(json.dumps(result.to_response(), indent=2))
    except PipelineError as e:
        LOG.error(f"{type(e).__name__}: {e.message}")
        if e.raw and args.verbose:
            LOG.error(f"Raw model output:\n{e.raw}")
        sys.exit(1)
    except Exception as e:  # pylint: disable=broad-except
        duration_ms = int((time.monotonic() - started) * 1000)
        LOG.exception("[%s] error duration_ms=%d", args.command, duration_ms)
        error = UnexpectedError(str(e) or "Unexpected error.")
        LOG.error(f"{type(error).__name__}: {error.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
