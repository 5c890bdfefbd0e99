"""
Explore the most probable continuations of a prompt.

Loads a transformers model, evaluates the prompt once, runs a breadth-first
or depth-first search over next-token candidates and prints the ranked
continuations.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from beamtree.common import BeamTreeError, SearchConfig

from .common.model import ModelWrapper
from .common.runner import STRATEGIES, Runner

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Input/Output Data Structures
# -----------------------------------------------------------------------------


@dataclass
class BeamExploreInput:
    """Input for a search run."""

    prompt: str
    model_name: str
    strategy: str
    n_ctx: int
    include_prompt: bool
    config: SearchConfig


@dataclass
class BeamExploreOutput:
    """Output from a search run."""

    prompt: str
    strategy: str
    num_results: int
    results: list[dict]
    best: Optional[dict]
    ranked_text: str


# -----------------------------------------------------------------------------
# Core Logic
# -----------------------------------------------------------------------------


def load_prompt_from_file(path: str | Path) -> str:
    """Prompt file contents, every line newline-terminated."""
    lines = Path(path).read_text().splitlines()
    return "".join(line + "\n" for line in lines)


def beam_explore(
    inp: BeamExploreInput, top: Optional[int] = None
) -> BeamExploreOutput:
    """Load the model, search and collect ranked results."""
    model = ModelWrapper(model_name=inp.model_name, n_ctx=inp.n_ctx)
    runner = Runner(model, inp.config)

    start_text = inp.prompt if inp.include_prompt else ""
    results = runner.run(inp.prompt, strategy=inp.strategy, start_text=start_text)

    best = results.best().to_dict() if len(results) else None
    return BeamExploreOutput(
        prompt=inp.prompt,
        strategy=inp.strategy,
        num_results=len(results),
        results=results.to_dicts(limit=top),
        best=best,
        ranked_text=results.format_results(limit=top),
    )


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------


def get_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.strip().split("\n")[0])
    parser.add_argument(
        "--model",
        type=str,
        default="Qwen/Qwen2.5-0.5B",
        help="Model name",
    )
    prompt = parser.add_mutually_exclusive_group()
    prompt.add_argument(
        "--prompt",
        type=str,
        default="Once upon a time",
        help="Prompt to explore",
    )
    prompt.add_argument(
        "--prompt-file",
        type=str,
        default=None,
        help="Read the prompt from this file",
    )
    parser.add_argument(
        "--strategy",
        choices=STRATEGIES,
        default="bfs",
        help="bfs: queue with periodic trim; dfs: recursive",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON file with SearchConfig fields",
    )
    parser.add_argument("--beam-width", type=int, default=None, help="Candidates per frame")
    parser.add_argument("--max-depth", type=int, default=None, help="Maximum depth")
    parser.add_argument(
        "--p-threshold",
        type=float,
        default=None,
        help="Minimum candidate probability (bfs)",
    )
    parser.add_argument(
        "--n-ctx",
        type=int,
        default=512,
        help="Context capacity in tokens",
    )
    parser.add_argument("--n-threads", type=int, default=None, help="CPU threads")
    parser.add_argument(
        "--include-prompt",
        action="store_true",
        help="Start every result with the prompt text",
    )
    parser.add_argument("--top", type=int, default=None, help="Print only the best N")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--verbose", action="store_true", help="Print every candidate")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level",
    )
    return parser.parse_args(argv)


def input_from_args(args: argparse.Namespace) -> BeamExploreInput:
    """Load input from command line arguments."""
    config = SearchConfig.from_json(args.config) if args.config else SearchConfig()
    overrides = {
        "beam_width": args.beam_width,
        "max_depth": args.max_depth,
        "p_threshold": args.p_threshold,
        "n_threads": args.n_threads,
        "verbose": args.verbose or None,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        config = replace(config, **overrides)

    if args.prompt_file:
        prompt = load_prompt_from_file(args.prompt_file)
    else:
        prompt = args.prompt

    return BeamExploreInput(
        prompt=prompt,
        model_name=args.model,
        strategy=args.strategy,
        n_ctx=args.n_ctx,
        include_prompt=args.include_prompt,
        config=config,
    )


def print_output(args: argparse.Namespace, output: BeamExploreOutput) -> None:
    """Print output to stdout."""
    if args.json:
        print(
            json.dumps(
                {
                    "strategy": output.strategy,
                    "num_results": output.num_results,
                    "best": output.best,
                    "results": output.results,
                },
                indent=2,
            )
        )
        return

    print(f"\n{output.prompt}")
    print("=" * 60)
    print(f"{output.num_results} results ({output.strategy})")
    print("=" * 60)
    if output.ranked_text:
        print(output.ranked_text)


def main(argv: Optional[list[str]] = None) -> int:
    args = get_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        inp: BeamExploreInput = input_from_args(args)
        output: BeamExploreOutput = beam_explore(inp, top=args.top)
    except (BeamTreeError, ValueError, OSError) as e:
        logger.error(str(e))
        return 1

    print_output(args, output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
