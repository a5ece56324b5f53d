# src/cdn_log_etl/cli.py

"""
Command line entry point.

    cdn-log-etl etl  [--bucket B] [--config FILE] [--staging|--production] ...
    cdn-log-etl cat  --region NAME [--bucket B] [--config FILE] [--download DIR]
    cdn-log-etl analyze --folder DIR --output FILE [--workers N]

Exit codes for `etl`: 0 success, 1 fatal error, 2 configuration error,
10 the API rejected our credentials.
"""

import argparse
import gzip
import logging
import os
import shutil
import signal
import sys
import time
from contextlib import closing
from pathlib import Path
from threading import Event

import boto3
from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers

from .analyze import analyze_folder
from .clients import LivepeerApiClient, S3Client, create_s3_client
from .config import AppConfig, load_region_names
from .etl import EtlDriver
from .exceptions import (
    CdnLogEtlError,
    CheckpointForbiddenError,
    ConfigurationError,
    S3AccessDeniedError,
    get_error_context,
)
from .window import source_log_prefix

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2
EXIT_FORBIDDEN = 10

# flag name -> environment variable it overrides
_ENV_OVERRIDES = {
    "bucket": "LOG_BUCKET_NAME",
    "config": "REGION_CONFIG_PATH",
    "api_url": "LIVEPEER_API_URL",
    "api_key": "LIVEPEER_API_KEY",
    "workers": "WORKER_POOL_SIZE",
    "log_level": "LOG_LEVEL",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdn-log-etl",
        description="Aggregate CDN access logs from S3 into hourly usage data.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    etl = sub.add_parser("etl", help="Process all complete hours and push them to the API")
    etl.add_argument("--bucket", help="Bucket holding the CDN logs")
    etl.add_argument("--config", help="YAML file mapping source dirs to region names")
    etl.add_argument("--api-url", help="Livepeer API URL")
    etl.add_argument("--api-key", help="Livepeer API key")
    etl.add_argument("--workers", type=int, help="Parallel file parsers per hour")
    etl.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    env = etl.add_mutually_exclusive_group()
    env.add_argument("--staging", dest="staging", action="store_true", default=None,
                     help="Process staging regions only")
    env.add_argument("--production", dest="staging", action="store_false",
                     help="Process production regions only")

    cat = sub.add_parser("cat", help="Print or download the raw logs of one region")
    cat.add_argument("--region", required=True, help="Region name from the config file")
    cat.add_argument("--bucket", help="Bucket holding the CDN logs")
    cat.add_argument("--config", help="YAML file mapping source dirs to region names")
    cat.add_argument("--download", metavar="DIR",
                     help="Download the objects into DIR instead of printing them")
    cat.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")

    analyze = sub.add_parser("analyze", help="Aggregate downloaded log files into a CSV")
    analyze.add_argument("--folder", required=True, help="Folder holding .gz log files")
    analyze.add_argument("--output", required=True, help="CSV file to write")
    analyze.add_argument("--workers", type=int, help="Parallel file parsers")
    analyze.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    return parser


def _apply_overrides(args: argparse.Namespace) -> None:
    for flag, env_var in _ENV_OVERRIDES.items():
        value = getattr(args, flag, None)
        if value is not None:
            os.environ[env_var] = str(value)
    if getattr(args, "staging", None) is not None:
        os.environ["STAGING"] = "true" if args.staging else "false"


def _setup_logging(service: str, level: str) -> Logger:
    logger = Logger(
        service=service,
        level=level,
        logger_handler=logging.StreamHandler(sys.stderr),
    )
    # the package logger must exist before its config can be copied
    logging.getLogger("cdn_log_etl")
    copy_config_to_registered_loggers(source_logger=logger, include={"cdn_log_etl"})
    return logger


def _install_signal_handlers(cancel: Event, logger: Logger) -> None:
    def _handle(signum, _frame):
        logger.warning("Signal received, cancelling run", extra={"signal": signum})
        cancel.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_etl(args: argparse.Namespace) -> int:
    try:
        config = AppConfig.load_from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    logger = _setup_logging(config.service_name, config.log_level)
    metrics = Metrics(namespace="CdnLogEtl", service=config.service_name)
    metrics.add_dimension(name="environment", value="staging" if config.staging else "production")

    try:
        region_names = load_region_names(config.region_config_path)
    except ConfigurationError as e:
        logger.error("Invalid region config", extra=get_error_context(e))
        return EXIT_CONFIG

    logger.info(
        "subcommand 'etl'",
        extra={
            "bucket": config.log_bucket,
            "config": config.region_config_path,
            "staging": config.staging,
            "workers": config.worker_pool_size,
        },
    )
    cancel = Event()
    _install_signal_handlers(cancel, logger)
    driver = EtlDriver(
        config,
        region_names,
        create_s3_client(config),
        LivepeerApiClient(config.api_url, config.api_key, timeout=config.api_timeout_seconds),
        metrics=metrics,
        cancel_event=cancel,
    )

    started = time.monotonic()
    try:
        results = driver.run()
    except (CheckpointForbiddenError, S3AccessDeniedError) as e:
        logger.error("Access denied, check credentials", extra=get_error_context(e))
        return EXIT_FORBIDDEN
    except CdnLogEtlError as e:
        logger.error("ETL run failed", extra=get_error_context(e))
        return EXIT_FATAL
    finally:
        metrics.flush_metrics()

    logger.info(
        "Execution complete",
        extra={
            "windows": len(results),
            "failed_files": sum(len(r.failed_files) for r in results),
            "took_seconds": round(time.monotonic() - started, 3),
        },
    )
    return EXIT_OK


def _print_object(s3: S3Client, bucket: str, key: str, out) -> None:
    print(f"Printing file {key}", file=sys.stderr)
    stream = s3.get_file_content_stream(bucket, key)
    with closing(stream), gzip.GzipFile(fileobj=stream, mode="rb") as contents:
        for raw in contents:
            out.write(raw.decode("utf-8", errors="replace"))


def _download_object(s3: S3Client, bucket: str, key: str, target_dir: Path, logger) -> None:
    target = target_dir / Path(key).name
    if target.exists():
        logger.debug("File exists on disk, skipping download", extra={"path": str(target)})
        return
    logger.info("Downloading file", extra={"key": key, "path": str(target)})
    stream = s3.get_file_content_stream(bucket, key)
    with closing(stream), open(target, "wb") as fh:
        shutil.copyfileobj(stream, fh)


def run_cat(args: argparse.Namespace) -> int:
    logger = _setup_logging(
        os.getenv("SERVICE_NAME", "cdn-log-etl"), os.getenv("LOG_LEVEL", "INFO").upper()
    )
    bucket = os.getenv("LOG_BUCKET_NAME")
    if not bucket:
        logger.error("Please provide bucket name")
        return EXIT_CONFIG
    try:
        region_names = load_region_names(os.getenv("REGION_CONFIG_PATH", "config.yaml"))
    except ConfigurationError as e:
        logger.error("Invalid region config", extra=get_error_context(e))
        return EXIT_CONFIG

    source_id = next((k for k, v in region_names.items() if v == args.region), None)
    if source_id is None:
        logger.error("Region is invalid", extra={"region": args.region})
        return EXIT_CONFIG

    target_dir = Path(args.download) if args.download else None
    if target_dir is not None:
        target_dir.mkdir(parents=True, exist_ok=True)

    s3 = S3Client(boto3.client("s3"))
    try:
        listing = s3.list_objects(bucket, prefix=source_log_prefix(source_id))
        for key in listing.keys:
            if target_dir is not None:
                _download_object(s3, bucket, key, target_dir, logger)
            else:
                _print_object(s3, bucket, key, sys.stdout)
    except S3AccessDeniedError as e:
        logger.error("Access denied", extra=get_error_context(e))
        return EXIT_FORBIDDEN
    except (CdnLogEtlError, OSError) as e:
        logger.error("cat failed", extra=get_error_context(e))
        return EXIT_FATAL
    return EXIT_OK


def run_analyze(args: argparse.Namespace) -> int:
    logger = _setup_logging(
        os.getenv("SERVICE_NAME", "cdn-log-etl"), os.getenv("LOG_LEVEL", "INFO").upper()
    )
    folder = Path(args.folder)
    output = Path(args.output)
    if not folder.is_dir():
        logger.error("Folder is invalid", extra={"folder": str(folder)})
        return EXIT_CONFIG
    if not output.parent.is_dir():
        logger.error("Output folder does not exist", extra={"output": str(output)})
        return EXIT_CONFIG

    logger.info("subcommand 'analyze'", extra={"folder": str(folder), "output": str(output)})
    try:
        errors = analyze_folder(
            folder,
            output,
            pool_size=int(os.getenv("WORKER_POOL_SIZE", "10")),
            collapse_http_status=os.getenv("COLLAPSE_HTTP_STATUS", "false").lower() == "true",
        )
    except (CdnLogEtlError, OSError) as e:
        logger.error("analyze failed", extra=get_error_context(e))
        return EXIT_FATAL
    if errors:
        logger.warning("Some files could not be parsed", extra={"files_failed": len(errors)})
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _apply_overrides(args)
    if args.command == "etl":
        return run_etl(args)
    if args.command == "analyze":
        return run_analyze(args)
    return run_cat(args)


if __name__ == "__main__":
    sys.exit(main())
