#!/usr/bin/env python3
"""Milvue CLI - submit DICOM studies to Milvue and download the results.

``milvue run`` processes the files of a single study, ``milvue batch`` processes
every study found in a directory.
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

import httpx
from pydicom import Dataset

from milvue.client import MilvueClient
from milvue.dicom_io import ResultNaming, inventory_directory, read_datasets, write_results
from milvue.exceptions import MilvueError, NoInferenceCommandError, RemoteError
from milvue.models import (
    InferenceCommand,
    Language,
    MilvueParams,
    OutputFormat,
    OutputSelection,
    PollPolicy,
    RecapTheme,
    StaticReportFormat,
    StructuredReportFormat,
)
from milvue.settings import MilvueEnvironment, settings
from milvue.utils.logger import DEFAULT_FORMAT, NO_TIME_FORMAT, logger, setup_logging
from milvue.validation import check_study_uids

LOG_LEVELS = ["debug", "info", "warning", "error", "quiet"]


def _choices(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


def params_from_args(args: argparse.Namespace) -> list[MilvueParams]:
    """Build one MilvueParams per requested inference command.

    Raises:
        NoInferenceCommandError: If neither SmartUrgences nor SmartXpert was requested
    """
    commands: list[InferenceCommand] = []
    if args.smart_urgences:
        commands.append(InferenceCommand.SMART_URGENCES)
    if args.smart_xpert:
        commands.append(InferenceCommand.SMART_XPERT)
    if not commands:
        raise NoInferenceCommandError()

    return [
        MilvueParams.for_inference(
            command,
            language=args.language,
            output_format=args.format,
            output_selection=args.output_selection,
            recap_theme=args.recap_theme,
            static_report_format=args.static_report,
            structured_report_format=args.structured_report,
            timezone=args.timezone,
        )
        for command in commands
    ]


def configure_logging(args: argparse.Namespace) -> None:
    """Configure loguru from the settings and the --log-level / --timestamp options."""
    if args.timestamp:
        log_format = DEFAULT_FORMAT
    else:
        log_format = settings.log_format or NO_TIME_FORMAT
    setup_logging(
        level=(args.log_level or settings.log_level).upper(),
        format=log_format,
        log_to_file=settings.log_to_file,
        log_file=settings.get_log_dir() / "milvue.log" if settings.log_to_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


def create_client(args: argparse.Namespace) -> MilvueClient:
    """Create a client from the settings, overridden by the command line."""
    config = settings.client_config(
        api_key=args.api_key, api_url=args.api_url, environment=args.environment
    )
    policy = settings.poll_policy
    overrides = {
        "interval": args.poll_interval,
        "max_wait": args.max_wait,
    }
    policy = PollPolicy(
        **{**policy.model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
    )
    return MilvueClient(config, poll_policy=policy)


def _check_submitted(study_uid: str, response: httpx.Response) -> None:
    if not response.is_success:
        raise RemoteError(
            f"Upload of study {study_uid} failed with status {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )


async def fetch_results(
    client: MilvueClient, study_uid: str, params_list: Sequence[MilvueParams]
) -> list[Dataset]:
    """Download the results of every inference command, in order."""
    results: list[Dataset] = []
    for params in params_list:
        datasets = await client.get(study_uid, params)
        if not datasets:
            logger.warning(
                f"No results for study {study_uid} for {params.inference_command.value}"
            )
        results.extend(datasets)
    return results


async def run_study(
    client: MilvueClient,
    datasets: Sequence[Dataset],
    params_list: Sequence[MilvueParams],
    output_dir: Path,
) -> list[Path]:
    """Submit one study, wait for it and write its results as file{i}.dcm."""
    study_uid = check_study_uids(datasets)
    logger.info(f"Study Instance UID: {study_uid}")

    response = await client.post(datasets)
    _check_submitted(study_uid, response)

    await client.wait_for_done(study_uid)

    results = await fetch_results(client, study_uid, params_list)
    return write_results(results, output_dir, naming=ResultNaming.INDEX)


async def process_study_paths(
    client: MilvueClient,
    study_uid: str,
    paths: Sequence[Path],
    params_list: Sequence[MilvueParams],
    output_dir: Path,
) -> bool:
    """Upload, wait for and download one study of a batch.

    Results are written to ``output_dir/<StudyInstanceUID>/<SOPInstanceUID>.dcm``.

    Returns:
        True if the study was fully processed
    """
    try:
        logger.info(f"Posting study {study_uid} ({len(paths)} files)")
        response = await client.post_paths(paths)
        _check_submitted(study_uid, response)
        logger.info(f"Uploaded: {study_uid}")

        await client.wait_for_done(study_uid)
        logger.info(f"Predicted: {study_uid}")

        results = await fetch_results(client, study_uid, params_list)
        write_results(results, output_dir / study_uid, naming=ResultNaming.SOP)
        logger.info(f"Downloaded: {study_uid} ({len(results)} files)")
    except (MilvueError, OSError) as e:
        logger.warning(f"Error while processing study {study_uid}: {e}")
        return False
    return True


async def run_command(args: argparse.Namespace) -> None:
    """Process the files given on the command line as one study."""
    params_list = params_from_args(args)

    datasets = read_datasets(args.dicoms)
    if not datasets:
        raise MilvueError("No valid DICOM files found at the specified path(s), exiting.")

    async with create_client(args) as client:
        written = await run_study(client, datasets, params_list, Path(args.output_dir))
    logger.info(f"Saved {len(written)} files to {args.output_dir}")


async def batch_command(args: argparse.Namespace) -> bool:
    """Process every study of a directory concurrently.

    Returns:
        True if every study was processed
    """
    params_list = params_from_args(args)

    input_dir = Path(args.input_dir)
    if not input_dir.is_dir():
        raise MilvueError(f"Input directory is not a directory: {input_dir}")

    inventory = inventory_directory(input_dir, recursive=args.recursive)
    if not inventory:
        logger.warning("No DICOM file to process.")
        return True

    output_dir = Path(args.output_dir)
    async with create_client(args) as client:
        outcomes = await asyncio.gather(
            *(
                process_study_paths(client, study_uid, paths, params_list, output_dir)
                for study_uid, paths in inventory.items()
            )
        )

    failed = outcomes.count(False)
    logger.info(f"Processed {len(outcomes) - failed}/{len(outcomes)} studies")
    return failed == 0


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-k", "--api-key", default=None, help="Override MILVUE_API_KEY")
    parser.add_argument("-a", "--api-url", default=None, help="Override the API URL")
    parser.add_argument(
        "-e",
        "--environment",
        choices=_choices(MilvueEnvironment),
        default=None,
        help="Environment whose URL setting is used (default: MILVUE_ENVIRONMENT or default)",
    )
    parser.add_argument(
        "-u", "--smart-urgences", action="store_true", help="Run SmartUrgences inference"
    )
    parser.add_argument("-x", "--smart-xpert", action="store_true", help="Run SmartXpert inference")
    parser.add_argument(
        "-l",
        "--language",
        choices=_choices(Language),
        default=Language.EN.value,
        help="Language of the annotated images (default: en)",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=_choices(OutputFormat),
        default=OutputFormat.OVERLAY.value,
        help="Output format of the annotated images (default: overlay)",
    )
    parser.add_argument(
        "-O",
        "--output-selection",
        choices=_choices(OutputSelection),
        default=OutputSelection.ALL.value,
        help="Outputs to return (default: all)",
    )
    parser.add_argument(
        "-t",
        "--recap-theme",
        choices=_choices(RecapTheme),
        default=RecapTheme.DARK.value,
        help="Theme of the recap (default: dark)",
    )
    parser.add_argument(
        "-s",
        "--static-report",
        choices=_choices(StaticReportFormat),
        default=StaticReportFormat.RGB.value,
        help="Format of the static report (default: rgb)",
    )
    parser.add_argument(
        "-S",
        "--structured-report",
        choices=_choices(StructuredReportFormat),
        default=StructuredReportFormat.NONE.value,
        help="Format of the structured report (default: none)",
    )
    parser.add_argument("--timezone", default=None, help="Offset from UTC in hours, e.g. +2")
    parser.add_argument(
        "--poll-interval", type=float, default=None, help="Seconds between status checks"
    )
    parser.add_argument(
        "--max-wait", type=float, default=None, help="Maximum seconds to wait for a study"
    )
    parser.add_argument(
        "-L",
        "--log-level",
        choices=LOG_LEVELS,
        default=None,
        help="Log level (default: MILVUE_LOG_LEVEL or info)",
    )
    parser.add_argument(
        "-T", "--timestamp", action="store_true", help="Display timestamps with log messages"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milvue", description="Milvue CLI - Medical Image Analysis with the Milvue API"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Process the DICOM files of one study")
    run_parser.add_argument("dicoms", nargs="+", help="Path to DICOM file(s)")
    run_parser.add_argument(
        "-d", "--output-dir", default=".", help="Output directory (default: current directory)"
    )
    _add_common_arguments(run_parser)

    # batch command
    batch_parser = subparsers.add_parser("batch", help="Process every study of a directory")
    batch_parser.add_argument("input_dir", help="Input directory")
    batch_parser.add_argument(
        "-o", "--output-dir", default=".", help="Output directory (default: current directory)"
    )
    batch_parser.add_argument(
        "-r", "--recursive", action="store_true", help="Recursive search in the input directory"
    )
    _add_common_arguments(batch_parser)

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in ("run", "batch"):
        parser.print_help()
        sys.exit(1)

    configure_logging(args)

    try:
        if args.command == "run":
            asyncio.run(run_command(args))
        elif not asyncio.run(batch_command(args)):
            sys.exit(1)
    except (MilvueError, OSError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
