import click
import dataclasses
import importlib.util
import json
import sys
from pathlib import Path

import yaml

import cram_reporter.config as default_config
from cram_reporter.checksums import StagingChecksums
from cram_reporter.exceptions import ConfigurationError
from cram_reporter.ledger import Ledger
from cram_reporter.listing import build_listing_command, date_prefixes, discover, run_listing
from cram_reporter.log_config import setup_logging
from cram_reporter.pipeline import Reporter, RunOptions
from cram_reporter.warehouse import Warehouse


def load_config(config_path):
    if config_path is None:
        return default_config
    try:
        spec = importlib.util.spec_from_file_location("_user_config", config_path)
        mod = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(mod)
    except (OSError, SyntaxError) as e:
        raise ConfigurationError(f"cannot load config {config_path}: {e}") from e
    missing = [name for name in default_config.REQUIRED_SETTINGS if not hasattr(mod, name)]
    if missing:
        raise ConfigurationError(f"config {config_path} is missing: {', '.join(missing)}")
    # Exit codes are not configurable
    for name in ("EXIT_OK", "EXIT_ERROR", "EXIT_DUPLICATES"):
        setattr(mod, name, getattr(default_config, name))
    return mod


@click.group()
def main():
    """Report newly delivered CRAM files in a manifest."""


@main.command()
@click.option("--dry-run/--no-dry-run", default=True, show_default=True,
              help="Read everything, change nothing and upload nothing")
@click.option("--send-empty/--no-send-empty", default=False, show_default=True,
              help="Upload a header-only manifest when there is nothing to report")
@click.option("--check-staging/--no-check-staging", default=True, show_default=True,
              help="Cross-check remote MD5s against staged checksums")
@click.option("--require-qc-complete/--no-require-qc-complete", default=True, show_default=True,
              help="Only report files of runs that are QC complete")
@click.option("--destination", default=None,
              help="Object-store URL the manifest is uploaded to")
@click.option("--suffix", default=None, help="Suffix for the manifest file name")
@click.option("--stdin", "from_stdin", is_flag=True,
              help="Read the listing from standard input instead of running the listing command")
@click.option("--listing-url", default=None, help="Bucket URL holding the date prefixes")
@click.option("--days", type=click.IntRange(min=1), default=None,
              help="Number of daily prefixes to list, ending today")
@click.option("--mongo-uri", envvar="CRAM_REPORTER_MONGO_URI", default=None,
              help="MongoDB URI (env: CRAM_REPORTER_MONGO_URI)")
@click.option("--mongo-db", envvar="CRAM_REPORTER_MONGO_DB", default=None,
              help="MongoDB database name (env: CRAM_REPORTER_MONGO_DB)")
@click.option("--config", "config_path", default=None, type=click.Path(),
              help="Path to an alternate config.py")
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--log-dir", default=None, type=click.Path(file_okay=False, path_type=Path),
              help="Also log to cram_reporter.log in this directory")
def report(dry_run, send_empty, check_staging, require_qc_complete, destination, suffix,
           from_stdin, listing_url, days, mongo_uri, mongo_db, config_path, log_level, log_dir):
    """Report unreported CRAM files and record the outcome in the ledger."""
    try:
        cfg = load_config(config_path)
        setup_logging(log_level, log_dir)
    except (ConfigurationError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if from_stdin:
        lines = click.open_file("-")
    else:
        prefixes = date_prefixes(listing_url or cfg.LISTING_URL, days or cfg.LISTING_DAYS)
        lines = run_listing(build_listing_command(cfg.LISTING_COMMAND, prefixes))

    from pymongo import MongoClient
    client = MongoClient(mongo_uri or cfg.MONGO_URI)
    db = client[mongo_db or cfg.MONGO_DB]

    options = RunOptions(
        destination=destination or cfg.MANIFEST_DESTINATION,
        dry_run=dry_run,
        send_empty=send_empty,
        check_staging=check_staging,
        require_qc_complete=require_qc_complete,
        suffix=suffix,
    )
    reporter = Reporter(
        cfg,
        Ledger(client, db, cfg),
        Warehouse(db, cfg),
        options,
        checksums=StagingChecksums(cfg.STAGING_CHECKSUM_GLOB),
    )
    try:
        result = reporter.run(lines)
    finally:
        client.close()
    sys.exit(result.exit_code)


@main.command()
@click.option("-i", "--input", "input_file", default="-", type=click.File("r"),
              help="Listing file (default: standard input)")
@click.option("--format", "output_format", type=click.Choice(["json", "yaml"]), default="json",
              show_default=True)
def parse(input_file, output_format):
    """Parse a listing and print candidate and duplicated files, without touching the database."""
    discovery = discover(input_file)
    payload = {
        "candidates": [dataclasses.asdict(c) for _, c in sorted(discovery.candidates.items())],
        "duplicates": discovery.duplicates,
    }
    if output_format == "yaml":
        click.echo(yaml.safe_dump(payload, sort_keys=False), nl=False)
    else:
        click.echo(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
