"""Command line entry point: ``playbook-runner <path...>``."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .config import RunnerOptions, load_environment
from .constants import DEFAULT_DUMP_PATHS, DEFAULT_NETWORK, DEPLOYED_KEY, INPUTS_KEY, OUTPUTS_KEY
from .errors import PlaybookError
from .logging_utils import get_logger
from .runner import Runner
from .script_reader import ScriptReader
from .state import deep_merge
from .state_args import format_state_args


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="playbook-runner",
        description="Run the blockchain playbooks defined by the list of files.",
    )
    parser.add_argument(
        "path",
        nargs="+",
        help="Glob path of playbooks to run. This can be the results file from a previously failed run.",
    )
    parser.add_argument(
        "-d",
        "--working-directory",
        default=str(Path.cwd()),
        help="Project directory holding contract artifacts, .env and mapping.py.",
    )
    parser.add_argument(
        "--state",
        "--env",
        action="append",
        metavar="KEY=VALUE|FILE",
        help="Values to pass to the state which may be referenced in playbooks.",
    )
    parser.add_argument(
        "-i",
        "--inputs",
        "--input",
        action="append",
        metavar="KEY=VALUE|FILE",
        help="Inputs file (YAML/JSON, e.g. a previous state dump) or key=value; may be repeated.",
    )
    parser.add_argument(
        "-n",
        "--network-name",
        default=DEFAULT_NETWORK,
        help="Network name; its RPC URL is read from <NETWORK>_RPC_URL or RPC_URL.",
    )
    parser.add_argument(
        "--results",
        "--results-dir",
        dest="result_dir",
        help="Directory for result logs of succeeded and failed transactions.",
    )
    parser.add_argument(
        "--interactive",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Ask for confirmation before running the playbooks.",
    )
    parser.add_argument("--delay", type=float, default=0.0, help="Seconds to wait between steps.")
    parser.add_argument("--dump", action="store_true", help="Dump state upon finish.")
    parser.add_argument(
        "--dump-path",
        action="append",
        dest="dump_paths",
        metavar="PATH",
        help=f"State path to dump; may be repeated (default: {', '.join(DEFAULT_DUMP_PATHS)}).",
    )
    parser.add_argument("--dump-all", action="store_true", help="Dump the entire state.")
    parser.add_argument("--dump-filename", help="Where to dump the state upon finish.")
    parser.add_argument("--contracts", dest="contracts_dir", help="Directory of contract artifact (ABI) JSON files.")
    parser.add_argument("--mapping", action="append", help="Output mapping file(s).")
    parser.add_argument(
        "--close-on-finish",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Shut down provider connections upon finish.",
    )
    parser.add_argument("-v", "--verbose", "--debug", dest="debug", action="store_true", help="Log inputs and outputs.")
    return parser


def build_initial_state(reader: ScriptReader, inputs: Any, state: Any) -> Dict[str, Any]:
    merged_inputs = format_state_args(reader, inputs, INPUTS_KEY)
    # a previous state dump passed as inputs carries $deployed/$outputs
    initial: Dict[str, Any] = {
        DEPLOYED_KEY: merged_inputs.pop(DEPLOYED_KEY, None) or {},
    }
    outputs = merged_inputs.pop(OUTPUTS_KEY, None)
    if outputs:
        initial[OUTPUTS_KEY] = outputs
    initial[INPUTS_KEY] = merged_inputs
    return deep_merge(initial, format_state_args(reader, state, "state"))


def confirm_on_console(plan: str) -> bool:
    print(plan)
    answer = input("Proceed? [y/N] ").strip().lower()
    return answer in ("y", "yes")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger = get_logger(level=logging.DEBUG if args.debug else logging.INFO)
    working_directory = Path(args.working_directory).expanduser().resolve()
    load_environment(working_directory)

    dump_paths: Optional[List[str]] = None if args.dump_all else (args.dump_paths or list(DEFAULT_DUMP_PATHS))
    options: Dict[str, Any] = {
        "working_directory": working_directory,
        "network_name": args.network_name,
        "result_dir": args.result_dir,
        "dump": args.dump or args.dump_all,
        "dump_paths": dump_paths,
        "dump_filename": args.dump_filename,
        "contracts_dir": args.contracts_dir,
        "delay": args.delay,
        "close_on_finish": args.close_on_finish,
        "debug": args.debug,
    }
    if args.mapping:
        options["mapping"] = args.mapping

    try:
        runner = Runner(
            options,
            logger=logger,
            confirm=confirm_on_console if args.interactive else None,
        )
        state = build_initial_state(runner.script_reader, args.inputs, args.state)
        runner.read(args.path, state)
    except PlaybookError as err:
        logger.error("Failed with error: %s", err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
