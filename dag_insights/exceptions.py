#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Common exceptions for the dag_insights package.
"""


class DagInsightsError(Exception):
    """Base class for every error raised by this package."""

    pass


class NotElevatedError(DagInsightsError, PermissionError):
    """The process does not run with administrative privileges.

    Installing PowerShell modules for all users and connecting to the tenant
    admin center both need an elevated session."""

    pass


class DependencyError(DagInsightsError):
    """A required client (PowerShell executable or module) is unavailable,
    even after an installation attempt."""

    pass


class SessionConnectionError(DagInsightsError, ConnectionError):
    """A session to the SharePoint admin center or to the Security &
    Compliance center could not be established."""

    pass


class ValidationError(DagInsightsError, ValueError):
    """Incompatible combination of report entity, report type and workload.

    The dispatcher surfaces it as a warning; it only ends the run when a
    single entity was requested."""

    pass


class ConfigurationError(DagInsightsError, ValueError):
    """The merged configuration holds an unknown or out of range value."""

    pass


class RemoteCallError(DagInsightsError):
    """A remote report call (create, status, export, label listing) failed."""

    pass


class PowerShellError(RemoteCallError):
    """The PowerShell host reported an error or returned an unreadable reply."""

    pass


class InputAbortedError(DagInsightsError):
    """Interactive input was cancelled or left empty."""

    pass
