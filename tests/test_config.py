#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#

import os
from unittest import mock

import pytest
import yaml

from dag_insights.config import (
    DEFAULT_LOGGING_DIRECTORY,
    CollectionConfig,
    _default_config,
    _update_config_field,
    apply_cli_overrides,
    build_collection_config,
    derive_admin_url,
    load_config,
)
from dag_insights.exceptions import ConfigurationError
from dag_insights.protocol import (
    ALL_ENTITIES,
    Privacy,
    ReportEntity,
    ReportType,
    SiteTemplate,
    Workload,
)

HERE = os.path.dirname(__file__)
FIXTURES_DIR = os.path.abspath(os.path.join(HERE, "fixtures"))

CONFIG_FILE = os.path.join(FIXTURES_DIR, "config.yml")


def test_default_config():
    config = load_config()

    assert config["report"]["entity"] == ALL_ENTITIES
    assert config["report"]["type"] == "RecentActivity"
    assert config["logging"]["directory"] == DEFAULT_LOGGING_DIRECTORY
    assert config["service"]["disconnect"] is False


def test_config_file_is_merged_over_defaults():
    with mock.patch.dict(os.environ, {"DAG_TEST_TENANT": "contoso"}):
        config = load_config(CONFIG_FILE)

    assert config["tenant"]["domain"] == "contoso"
    assert config["report"]["entity"] == "PermissionedUsers"
    assert config["report"]["count_of_users_more_than"] == 25
    assert config["service"]["disconnect"] is True
    assert config["logging"]["filename"] == "custom.log"
    # untouched defaults survive
    assert config["report"]["workload"] == "SharePoint"
    assert config["logging"]["directory"] == DEFAULT_LOGGING_DIRECTORY
    assert config["service"]["check_elevation"] is True


def test_config_file_written_by_yaml(tmp_path):
    config_file = tmp_path / "config.yml"
    config_file.write_text(
        yaml.safe_dump({"tenant": {"domain": "fabrikam"}, "report": {"type": "Snapshot"}})
    )

    config = load_config(str(config_file))

    assert config["tenant"]["domain"] == "fabrikam"
    assert config["report"]["type"] == "Snapshot"


def test_cli_overrides_take_precedence():
    config = _default_config()

    apply_cli_overrides(
        config,
        {
            "tenant_domain": "contoso",
            "report_entity": "SharingLinks_Guests",
            "count_of_users_more_than": 3,
            "template": None,
            "logging_directory": "/tmp/dag",
        },
    )

    assert config["tenant"]["domain"] == "contoso"
    assert config["report"]["entity"] == "SharingLinks_Guests"
    assert config["report"]["count_of_users_more_than"] == 3
    assert config["report"]["template"] is None
    assert config["logging"]["directory"] == "/tmp/dag"


def test_unset_flags_keep_configured_values():
    config = _default_config()
    config["service"]["disconnect"] = True

    apply_cli_overrides(
        config,
        {
            "disconnect_from_remote": False,
            "skip_elevation_check": False,
            "check_sensitivity_label": False,
        },
    )

    assert config["service"]["disconnect"] is True
    assert config["service"]["check_elevation"] is True
    assert config["report"]["check_sensitivity_label"] is False


def test_skip_elevation_check_flag():
    config = _default_config()

    apply_cli_overrides(config, {"skip_elevation_check": True})

    assert config["service"]["check_elevation"] is False


def test_unknown_options_are_ignored():
    config = _default_config()

    apply_cli_overrides(config, {"filebeat": True})

    assert config == _default_config()


def test_update_config_field_when_nested_field_does_not_exist():
    config = {}

    _update_config_field(config, "report.template", "AllSites")

    assert config["report"]["template"] == "AllSites"


@pytest.mark.parametrize(
    "domain",
    [
        "contoso",
        "Contoso",
        "contoso.onmicrosoft.com",
        "contoso.sharepoint.com",
        "contoso-admin.sharepoint.com",
        "https://contoso-admin.sharepoint.com/",
    ],
)
def test_derive_admin_url(domain):
    assert derive_admin_url(domain) == "https://contoso-admin.sharepoint.com"


def test_derive_admin_url_keeps_dashes():
    assert derive_admin_url("my-tenant") == "https://my-tenant-admin.sharepoint.com"


@pytest.mark.parametrize("domain", ["", "contoso.com", "https://contoso.example.org"])
def test_derive_admin_url_rejects_unknown_domains(domain):
    with pytest.raises(ValueError):
        derive_admin_url(domain)


def make_config(**report):
    config = _default_config()
    config["tenant"]["domain"] = "contoso"
    config["report"].update(report)
    return config


def test_build_collection_config_defaults():
    collection = build_collection_config(make_config())

    assert collection.admin_url == "https://contoso-admin.sharepoint.com"
    assert collection.entity == ALL_ENTITIES
    assert collection.processing_all
    assert collection.report_type == ReportType.RECENT_ACTIVITY
    assert collection.workload == Workload.SHAREPOINT
    assert collection.template is None
    assert collection.privacy == Privacy.ALL
    assert collection.check_sensitivity_label is False


def test_build_collection_config_parses_values():
    config = make_config(
        entity="permissionedusers",
        type="snapshot",
        workload="OneDriveForBusiness",
        template="ClassicSites",
        privacy="Private",
        count_of_users_more_than="7",
    )
    config["tenant"]["admin_url"] = "https://custom-admin.sharepoint.com/"
    config["compliance"]["user_principal_name"] = "admin@contoso.com"

    collection = build_collection_config(config)

    assert collection.admin_url == "https://custom-admin.sharepoint.com"
    assert collection.entity == ReportEntity.PERMISSIONED_USERS
    assert not collection.processing_all
    assert collection.report_type == ReportType.SNAPSHOT
    assert collection.workload == Workload.ONEDRIVE_FOR_BUSINESS
    assert collection.template == SiteTemplate.CLASSIC_SITES
    assert collection.privacy == Privacy.PRIVATE
    assert collection.count_of_users_more_than == 7
    assert collection.user_principal_name == "admin@contoso.com"


def test_build_collection_config_accepts_lowercase_all():
    collection = build_collection_config(make_config(entity="all"))

    assert collection.entity == ALL_ENTITIES


def test_build_collection_config_requires_tenant():
    with pytest.raises(ConfigurationError) as e:
        build_collection_config(_default_config())

    assert e.match("Tenant domain is required")


@pytest.mark.parametrize(
    "report",
    [
        {"entity": "SharingLinks_Everyone"},
        {"type": "Weekly"},
        {"workload": "Exchange"},
        {"template": "Wiki"},
        {"privacy": "Secret"},
        {"count_of_users_more_than": -1},
        {"count_of_users_more_than": "many"},
    ],
)
def test_build_collection_config_rejects_invalid_values(report):
    with pytest.raises(ConfigurationError):
        build_collection_config(make_config(**report))


@pytest.mark.parametrize("entity", ["All", "all", " ALL "])
def test_processing_all_accepts_any_spelling(entity):
    assert CollectionConfig(tenant_domain="contoso", admin_url="u", entity=entity).processing_all


def test_processing_all_is_false_for_one_entity():
    config = CollectionConfig(
        tenant_domain="contoso", admin_url="u", entity=ReportEntity.PERMISSIONED_USERS
    )

    assert not config.processing_all
