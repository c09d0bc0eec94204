#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#

import re
from dataclasses import dataclass
from typing import Optional, Union

from envyaml import EnvYAML

from dag_insights.exceptions import ConfigurationError
from dag_insights.logger import logger
from dag_insights.protocol import (
    ALL_ENTITIES,
    Privacy,
    ReportEntity,
    ReportType,
    SiteTemplate,
    Workload,
    is_all_entities,
    parse_enum,
)

DEFAULT_LOGGING_DIRECTORY = "./logs"
DEFAULT_LOGGING_FILENAME = "dag_insights.log"

SHAREPOINT_MODULE = "Microsoft.Online.SharePoint.PowerShell"
COMPLIANCE_MODULE = "ExchangeOnlineManagement"

TENANT_PATTERN = re.compile(
    r"^(?:https://)?(?P<tenant>[a-z0-9][a-z0-9-]*?)(?:-admin)?(?:\.onmicrosoft\.com|\.sharepoint\.com)?/?$",
    re.IGNORECASE,
)


def load_config(config_file=None):
    configuration = _default_config()
    if config_file is not None:
        logger.info(f"Loading config from {config_file}")
        configuration = dict(
            _merge_dicts(configuration, EnvYAML(config_file, strict=False).export())
        )
    return configuration


# Left - CLI option; Right - in the configuration
config_mappings = {
    "tenant_domain": "tenant.domain",
    "tenant_admin_url": "tenant.admin_url",
    "report_entity": "report.entity",
    "report_type": "report.type",
    "workload": "report.workload",
    "count_of_users_more_than": "report.count_of_users_more_than",
    "template": "report.template",
    "privacy": "report.privacy",
    "check_sensitivity_label": "report.check_sensitivity_label",
    "user_principal_name": "compliance.user_principal_name",
    "disconnect_from_remote": "service.disconnect",
    "skip_elevation_check": "service.check_elevation",
    "log_level": "service.log_level",
    "logging_directory": "logging.directory",
    "logging_filename": "logging.filename",
}


def _default_config():
    return {
        "tenant": {
            "domain": None,
            "admin_url": None,
        },
        "report": {
            "entity": ALL_ENTITIES,
            "type": ReportType.RECENT_ACTIVITY.value,
            "workload": Workload.SHAREPOINT.value,
            "count_of_users_more_than": 0,
            "template": None,
            "privacy": Privacy.ALL.value,
            "check_sensitivity_label": False,
        },
        "compliance": {
            "user_principal_name": None,
        },
        "service": {
            "disconnect": False,
            "check_elevation": True,
            "install_missing_modules": True,
            "log_level": "INFO",
        },
        "logging": {
            "directory": DEFAULT_LOGGING_DIRECTORY,
            "filename": DEFAULT_LOGGING_FILENAME,
        },
        "powershell": {
            "executable": None,
            "modules": [SHAREPOINT_MODULE, COMPLIANCE_MODULE],
        },
    }


def apply_cli_overrides(configuration, options):
    """Overrides configuration fields with the CLI options that were given.

    Options left to `None` (or unset flags) keep the configured value.
    """
    for option, value in options.items():
        if option not in config_mappings or value is None:
            continue

        if option == "skip_elevation_check":
            if not value:
                continue
            value = False
        elif option in ("check_sensitivity_label", "disconnect_from_remote") and not value:
            continue

        _update_config_field(configuration, config_mappings[option], value)
        logger.debug(f"Overridden {config_mappings[option]}")

    return configuration


def _update_config_field(configuration, field, value):
    """
    Update configuration field value taking into account the nesting.

    Configuration is a hash of hashes, so we need to dive inside to do proper assignment.

    E.g. _update_config_field({}, "report.type", "Snapshot") will result in the following config:
    {
        "report": {
            "type": "Snapshot"
        }
    }
    """
    subfields = field.split(".")

    current_leaf = configuration
    for subfield in subfields[:-1]:
        if subfield not in current_leaf:
            current_leaf[subfield] = {}
        current_leaf = current_leaf[subfield]

    current_leaf[subfields[-1]] = value


def _merge_dicts(hsh1, hsh2):
    for k in set(hsh1.keys()).union(hsh2.keys()):
        if k in hsh1 and k in hsh2:
            if isinstance(hsh1[k], dict) and isinstance(hsh2[k], dict):  # only merge objects
                yield (k, dict(_merge_dicts(hsh1[k], hsh2[k])))
            else:
                yield (k, hsh2[k])
        elif k in hsh1:
            yield (k, hsh1[k])
        else:
            yield (k, hsh2[k])


def derive_admin_url(domain):
    """Returns the admin center URL of a tenant.

    Accepts `contoso`, `contoso.onmicrosoft.com`, `contoso.sharepoint.com` or
    `contoso-admin.sharepoint.com` and returns `https://contoso-admin.sharepoint.com`.
    """
    match = TENANT_PATTERN.match((domain or "").strip())
    if match is None:
        msg = f"Unable to derive the SharePoint admin URL from tenant domain '{domain}'"
        raise ValueError(msg)
    return f"https://{match.group('tenant').lower()}-admin.sharepoint.com"


@dataclass
class CollectionConfig:
    tenant_domain: str
    admin_url: str
    entity: Union[ReportEntity, str] = ALL_ENTITIES
    report_type: ReportType = ReportType.RECENT_ACTIVITY
    workload: Workload = Workload.SHAREPOINT
    count_of_users_more_than: int = 0
    template: Optional[SiteTemplate] = None
    privacy: Privacy = Privacy.ALL
    check_sensitivity_label: bool = False
    user_principal_name: Optional[str] = None
    disconnect: bool = False

    @property
    def processing_all(self):
        return is_all_entities(self.entity)


def build_collection_config(configuration):
    """Validates the merged configuration and returns a `CollectionConfig`."""
    tenant = configuration.get("tenant", {}) or {}
    report = configuration.get("report", {}) or {}
    compliance = configuration.get("compliance", {}) or {}
    service = configuration.get("service", {}) or {}

    tenant_domain = tenant.get("domain")
    if not tenant_domain:
        msg = "Tenant domain is required (tenant.domain or --tenant-domain)"
        raise ConfigurationError(msg)

    try:
        admin_url = tenant.get("admin_url") or derive_admin_url(tenant_domain)

        entity = report.get("entity") or ALL_ENTITIES
        if is_all_entities(entity):
            entity = ALL_ENTITIES
        else:
            entity = parse_enum(ReportEntity, entity)

        count = int(report.get("count_of_users_more_than") or 0)
        if count < 0:
            msg = f"count_of_users_more_than must be >= 0, got {count}"
            raise ValueError(msg)

        return CollectionConfig(
            tenant_domain=tenant_domain,
            admin_url=admin_url.rstrip("/"),
            entity=entity,
            report_type=parse_enum(
                ReportType, report.get("type") or ReportType.RECENT_ACTIVITY
            ),
            workload=parse_enum(Workload, report.get("workload") or Workload.SHAREPOINT),
            count_of_users_more_than=count,
            template=parse_enum(SiteTemplate, report.get("template")),
            privacy=parse_enum(Privacy, report.get("privacy") or Privacy.ALL),
            check_sensitivity_label=bool(report.get("check_sensitivity_label")),
            user_principal_name=compliance.get("user_principal_name") or None,
            disconnect=bool(service.get("disconnect")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(str(e)) from e
