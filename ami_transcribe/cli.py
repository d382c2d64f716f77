from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from . import __version__
from .config import default_config_path, load_api_key, load_config_or_default, save_api_key
from .errors import AmiClientError
from .output import ensure_writable, write_result
from .protocol import SessionOptions
from .session import transcribe_file
from .transport.ws import resolve_endpoint

API_KEY_PROMPT = "AmiVoice Cloud Platform API KEY: "

_LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ami-transcribe",
        description="Transcribe audio with the AmiVoice Cloud Platform websocket API",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--config",
        type=Path,
        default=default_config_path(),
        help="Path to config JSON (default: user config dir)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("configure", help="Configure the AmiVoice Cloud Platform API key")

    transcribe = sub.add_parser("transcribe", help="Transcribe an audio file")
    transcribe.add_argument("--audio-path", type=Path, required=True, help="Audio file to upload")
    transcribe.add_argument(
        "--output-file", type=Path, required=True, help="Where to write the result"
    )
    transcribe.add_argument("--api-key", help="API key (default: configured key, else prompt)")
    transcribe.add_argument("--audio-format", default="16k", help="Audio format (default: 16k)")
    transcribe.add_argument(
        "--grammar-file-names",
        default="-a-general",
        help="Grammar profile (default: -a-general)",
    )
    transcribe.add_argument(
        "--no-log",
        action="store_true",
        help="Use the endpoint that does not keep server-side logs",
    )
    transcribe.add_argument("-v", "--verbose", action="store_true", help="Log each packet")
    transcribe.add_argument("--trace", action="store_true", help="Log full packet contents")
    transcribe.add_argument(
        "--is-json-output",
        action="store_true",
        help="Write options, packets and transcript as JSON",
    )

    return parser


def prompt_api_key(input_fn: Callable[[str], str] = input) -> str:
    """Ask for the API key until a non-empty one is entered."""
    api_key = ""
    while not api_key:
        api_key = input_fn(API_KEY_PROMPT).strip()
    return api_key


def resolve_log_level(*, verbose: bool, trace: bool) -> int:
    if trace:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def _configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def run_configure(args: argparse.Namespace) -> int:
    api_key = prompt_api_key()
    save_api_key(args.config, api_key)
    return 0


def run_transcribe(args: argparse.Namespace) -> int:
    api_key = args.api_key or load_api_key(args.config) or prompt_api_key()
    config = load_config_or_default(args.config)

    options = SessionOptions(
        audio_format=args.audio_format,
        grammar_profile=args.grammar_file_names,
        authorization=api_key,
    )

    ensure_writable(args.output_file)

    result = asyncio.run(
        transcribe_file(
            resolve_endpoint(with_log=not args.no_log),
            args.audio_path,
            options,
            capture_packets=args.is_json_output,
            timings=config.timings,
        )
    )

    write_result(args.output_file, result, json_output=args.is_json_output)

    if result.error_message is not None:
        print(result.error_message, file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    _configure_logging(
        resolve_log_level(
            verbose=getattr(args, "verbose", False),
            trace=getattr(args, "trace", False),
        )
    )

    try:
        if args.command == "configure":
            return run_configure(args)
        return run_transcribe(args)
    except (AmiClientError, OSError, ValueError) as err:
        _LOGGER.debug("Command failed", exc_info=True)
        print(err, file=sys.stderr)
        return 1
