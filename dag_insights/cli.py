#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Command Line Interface.

When the project is installed as a Python package, a `dag-insights`
executable is added in the PATH and executes the `main` function of this
module.

Hard precondition failures (not elevated, missing modules, unreachable
tenant) are logged and end the command early with a zero exit code.
"""
import asyncio
import functools
import logging

import click
from click import ClickException, UsageError
from tabulate import tabulate

from dag_insights import __version__
from dag_insights.config import (
    DEFAULT_LOGGING_DIRECTORY,
    DEFAULT_LOGGING_FILENAME,
    apply_cli_overrides,
    build_collection_config,
    load_config,
)
from dag_insights.dispatcher import ReportDispatcher
from dag_insights.exceptions import (
    ConfigurationError,
    DependencyError,
    NotElevatedError,
    RemoteCallError,
    SessionConnectionError,
)
from dag_insights.logger import logger, set_logger
from dag_insights.powershell import PowerShellHost
from dag_insights.preflight_check import PreflightCheck
from dag_insights.protocol import (
    ALL_ENTITIES,
    Privacy,
    ReportEntity,
    ReportType,
    SiteTemplate,
    Workload,
    parse_enum,
)
from dag_insights.sessions import ComplianceSession, SharePointAdminSession

__all__ = ["main"]

FATAL_ERRORS = (NotElevatedError, DependencyError, SessionConnectionError)


def _choices(enum_klass, *extra):
    return click.Choice([member.value for member in enum_klass] + list(extra), case_sensitive=False)


def tenant_options(func):
    """Options shared by every command talking to the tenant."""
    options = [
        click.option(
            "-c",
            "--config",
            "config_file",
            type=click.Path(exists=True, dir_okay=False),
            help="YAML configuration file. CLI options take precedence.",
        ),
        click.option(
            "--tenant-domain",
            help="Tenant name, e.g. contoso or contoso.onmicrosoft.com.",
        ),
        click.option(
            "--tenant-admin-url",
            help="SharePoint admin center URL. Derived from the tenant domain when omitted.",
        ),
        click.option(
            "--disconnect-from-remote",
            is_flag=True,
            default=False,
            help="Disconnect from the SharePoint admin center when done.",
        ),
        click.option(
            "--skip-elevation-check",
            is_flag=True,
            default=False,
            help="Do not require administrator privileges.",
        ),
        click.option(
            "--logging-directory",
            type=click.Path(file_okay=False),
            help=f"Directory of the log file (default: {DEFAULT_LOGGING_DIRECTORY}).",
        ),
        click.option(
            "--logging-filename",
            help=f"Log file name (default: {DEFAULT_LOGGING_FILENAME}).",
        ),
        click.option(
            "--log-level",
            type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
            help="Set log level.",
        ),
        click.option(
            "--filebeat",
            is_flag=True,
            default=False,
            help="Output in filebeat format.",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def prepare(config_file, filebeat, options):
    """Loads the config, sets the logger and validates the collection settings.

    Returns `(config, collection_config)`, or `None` when the log directory
    cannot be created.
    """
    try:
        config = load_config(config_file)
    except Exception as e:
        set_logger(logging.INFO, filebeat=filebeat)
        msg = f"Could not parse {config_file}. Check logs for more information"
        logger.exception(f"{msg}.\n{e}")
        raise ClickException(msg) from e

    apply_cli_overrides(config, options)

    logging_config = config["logging"]
    try:
        set_logger(
            config["service"]["log_level"] or logging.INFO,
            filebeat=filebeat,
            directory=logging_config["directory"],
            filename=logging_config["filename"],
        )
    except OSError as e:
        click.echo(
            f"Unable to create log directory {logging_config['directory']}: {e}"
        )
        return None

    try:
        collection = build_collection_config(config)
    except ConfigurationError as e:
        raise UsageError(str(e)) from e

    logger.info(f"Running dag-insights version {__version__}")
    return config, collection


def with_tenant(func):
    """Runs the decorated coroutine with a started PowerShell host and a
    SharePoint admin session that passed the preflight checks."""

    @functools.wraps(func)
    async def wrapped(config, collection, *args, **kwargs):
        host = PowerShellHost(config["powershell"]["executable"])
        sharepoint = SharePointAdminSession(host, collection.admin_url)
        try:
            try:
                await PreflightCheck(config, host, collection.admin_url).run()
            except FATAL_ERRORS:
                return None
            return await func(config, collection, host, sharepoint, *args, **kwargs)
        finally:
            await host.close()

    return wrapped


@with_tenant
async def _collect(config, collection, host, sharepoint):
    dispatcher = ReportDispatcher(
        sharepoint, functools.partial(ComplianceSession, host)
    )
    try:
        return await dispatcher.run_collection(collection)
    except SessionConnectionError:
        return None
    finally:
        await dispatcher.teardown(collection)


@with_tenant
async def _status(config, collection, host, sharepoint, entity, report_id):
    try:
        await sharepoint.ensure_connected()
        return await sharepoint.get_insights(entity=entity, report_id=report_id)
    except (SessionConnectionError, RemoteCallError) as e:
        logger.error(str(e))
        return None
    finally:
        if collection.disconnect:
            await sharepoint.disconnect()


@with_tenant
async def _export(config, collection, host, sharepoint, report_id, download_path, entity):
    try:
        await sharepoint.ensure_connected()
        return await sharepoint.export_insight(report_id, download_path, entity=entity)
    except (SessionConnectionError, RemoteCallError) as e:
        logger.error(str(e))
        return None
    finally:
        if collection.disconnect:
            await sharepoint.disconnect()


@click.group(invoke_without_command=True)
@click.version_option(__version__, "-v", "--version", message="%(version)s")
@click.pass_context
def cli(ctx):
    """Trigger and manage SharePoint Online Data Access Governance reports."""
    # print help page if no subcommands provided
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@click.command(help="Request Data Access Governance reports")
@tenant_options
@click.option(
    "--report-entity",
    type=_choices(ReportEntity, ALL_ENTITIES),
    help="Report entity to request, or All (default).",
)
@click.option("--report-type", type=_choices(ReportType), help="Default: RecentActivity.")
@click.option("--workload", type=_choices(Workload), help="Default: SharePoint.")
@click.option(
    "--count-of-users-more-than",
    type=click.IntRange(min=0),
    help="Only report on objects shared with more users than this (default: 0).",
)
@click.option("--template", type=_choices(SiteTemplate), help="Site template filter.")
@click.option("--privacy", type=_choices(Privacy), help="Default: All.")
@click.option(
    "--check-sensitivity-label",
    is_flag=True,
    default=False,
    help="Request the SensitivityLabelForFiles report (asks for a label).",
)
@click.option(
    "--user-principal-name",
    help="Account used for the Security & Compliance center.",
)
def run(config_file, filebeat, **options):
    prepared = prepare(config_file, filebeat, options)
    if prepared is None:
        return
    config, collection = prepared

    summary = asyncio.run(_collect(config, collection))
    if summary is None:
        logger.info("Bye")
        return

    click.echo("")
    if not summary.results:
        click.echo("No report requested")
    else:
        click.echo(
            tabulate(
                [
                    [
                        result.source_request.entity.value,
                        result.source_request.report_type.value,
                        result.source_request.workload.value,
                        result.report_id or "-",
                    ]
                    for result in summary.results
                ],
                headers=["Entity", "Report type", "Workload", "Report ID"],
            )
        )
    click.echo(
        f"\n{summary.generated} report(s) generated, {summary.attempted} requested, {len(summary.skipped)} skipped"
    )


@click.command(help="List reports and their status")
@tenant_options
@click.option("--report-entity", type=_choices(ReportEntity), help="Only this entity.")
@click.option("--report-id", help="Only this report.")
def status(config_file, filebeat, report_entity, report_id, **options):
    prepared = prepare(config_file, filebeat, options)
    if prepared is None:
        return
    config, collection = prepared

    entity = parse_enum(ReportEntity, report_entity)
    records = asyncio.run(_status(config, collection, entity, report_id))
    if records is None:
        return

    click.echo("")
    if len(records) == 0:
        click.echo("No reports found")
        return

    click.echo(f"Showing {len(records)} reports \n")
    click.echo(
        tabulate(
            [
                [
                    click.style(record.report_id, fg="green"),
                    record.name,
                    record.entity,
                    record.workload,
                    record.report_type,
                    record.status,
                    record.created,
                ]
                for record in records
            ],
            headers=["ID", "Name", "Entity", "Workload", "Type", "Status", "Created"],
        )
    )


@click.command(help="Download a generated report")
@tenant_options
@click.option("--report-id", required=True, help="Report to download.")
@click.option(
    "--download-path",
    type=click.Path(file_okay=False),
    default=".",
    show_default=True,
    help="Directory the report is saved into.",
)
@click.option("--report-entity", type=_choices(ReportEntity), help="Entity of the report.")
def export(config_file, filebeat, report_id, download_path, report_entity, **options):
    prepared = prepare(config_file, filebeat, options)
    if prepared is None:
        return
    config, collection = prepared

    entity = parse_enum(ReportEntity, report_entity)
    path = asyncio.run(_export(config, collection, report_id, download_path, entity))
    if path is not None:
        click.echo(click.style(f"Report {report_id} saved to {path}", fg="green"))


cli.add_command(run)
cli.add_command(status)
cli.add_command(export)


def main(args=None):
    return cli(args=args)
