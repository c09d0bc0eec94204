#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import logging
from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest

from dag_insights.config import COMPLIANCE_MODULE, SHAREPOINT_MODULE, _default_config
from dag_insights.exceptions import (
    DependencyError,
    NotElevatedError,
    PowerShellError,
    SessionConnectionError,
)
from dag_insights.preflight_check import PreflightCheck
from tests.commons import ADMIN_URL


def make_host(*results, executable="/usr/bin/pwsh"):
    host = Mock()
    host.executable = executable
    host.start = AsyncMock()
    host.invoke = AsyncMock(side_effect=list(results))
    return host


def scripts(host):
    return [call.args[0] for call in host.invoke.await_args_list]


@pytest.fixture
def elevated(mocker):
    mocker.patch("dag_insights.preflight_check.is_elevated", return_value=True)


@pytest.fixture
def not_elevated(mocker):
    mocker.patch("dag_insights.preflight_check.is_elevated", return_value=False)


def test_elevation_passes(elevated):
    PreflightCheck(_default_config(), make_host(), ADMIN_URL).check_elevation()


def test_elevation_fails(not_elevated):
    preflight = PreflightCheck(_default_config(), make_host(), ADMIN_URL)

    with pytest.raises(NotElevatedError):
        preflight.check_elevation()


def test_elevation_check_can_be_skipped(not_elevated, patch_logger):
    config = _default_config()
    config["service"]["check_elevation"] = False

    PreflightCheck(config, make_host(), ADMIN_URL).check_elevation()

    patch_logger.assert_present("Skipping the administrator privilege check")


@pytest.mark.asyncio
async def test_dependencies_already_installed():
    host = make_host(True, None, True, None)
    preflight = PreflightCheck(_default_config(), host, ADMIN_URL)

    await preflight.check_dependencies()

    host.start.assert_awaited_once()
    assert scripts(host) == [
        f"[bool](Get-Module -ListAvailable -Name '{SHAREPOINT_MODULE}')",
        f"Import-Module -Name '{SHAREPOINT_MODULE}'",
        f"[bool](Get-Module -ListAvailable -Name '{COMPLIANCE_MODULE}')",
        f"Import-Module -Name '{COMPLIANCE_MODULE}'",
    ]


@pytest.mark.asyncio
async def test_missing_module_is_installed(patch_logger):
    config = _default_config()
    config["powershell"]["modules"] = [COMPLIANCE_MODULE]
    host = make_host(False, None, None)

    await PreflightCheck(config, host, ADMIN_URL).check_dependencies()

    assert scripts(host)[1] == (
        f"Install-Module -Name '{COMPLIANCE_MODULE}' -Scope AllUsers -Force -AllowClobber"
    )
    patch_logger.assert_present(f"Installing PowerShell module {COMPLIANCE_MODULE}")


@pytest.mark.asyncio
async def test_missing_module_without_install():
    config = _default_config()
    config["service"]["install_missing_modules"] = False
    host = make_host(False)

    with pytest.raises(DependencyError) as e:
        await PreflightCheck(config, host, ADMIN_URL).check_dependencies()

    assert e.match("is not installed")


@pytest.mark.asyncio
async def test_install_failure():
    host = make_host(False, PowerShellError("PSGallery unreachable"))

    with pytest.raises(DependencyError) as e:
        await PreflightCheck(_default_config(), host, ADMIN_URL).check_dependencies()

    assert e.match("PSGallery unreachable")


@pytest.mark.asyncio
async def test_import_failure():
    host = make_host(True, PowerShellError("assembly conflict"))

    with pytest.raises(DependencyError):
        await PreflightCheck(_default_config(), host, ADMIN_URL).check_dependencies()


@pytest.mark.asyncio
async def test_sharepoint_module_uses_windows_powershell_on_windows():
    config = _default_config()
    config["powershell"]["modules"] = [SHAREPOINT_MODULE]
    host = make_host(True, None, executable="pwsh.exe")

    with patch("dag_insights.preflight_check.os.name", "nt"):
        await PreflightCheck(config, host, ADMIN_URL).check_dependencies()

    assert scripts(host)[1].endswith("-UseWindowsPowerShell")


@pytest.mark.asyncio
async def test_host_start_failure_propagates():
    host = make_host()
    host.start.side_effect = DependencyError("PowerShell was not found")

    with pytest.raises(DependencyError):
        await PreflightCheck(_default_config(), host, ADMIN_URL).check_dependencies()


@pytest.mark.asyncio
async def test_admin_endpoint_reachable(mock_responses, patch_logger):
    mock_responses.get(ADMIN_URL, status=302)

    await PreflightCheck(_default_config(), make_host(), ADMIN_URL).check_admin_endpoint()

    patch_logger.assert_present(f"{ADMIN_URL} is reachable (status 302)")


@pytest.mark.asyncio
async def test_admin_endpoint_unreachable(mock_responses):
    mock_responses.get(ADMIN_URL, exception=aiohttp.ClientConnectionError("refused"))

    with pytest.raises(SessionConnectionError) as e:
        await PreflightCheck(
            _default_config(), make_host(), ADMIN_URL
        ).check_admin_endpoint()

    assert e.match("unreachable")


@pytest.mark.asyncio
async def test_run_in_order(elevated, mock_responses, patch_logger):
    mock_responses.get(ADMIN_URL, status=200)
    host = make_host(True, None, True, None)

    await PreflightCheck(_default_config(), host, ADMIN_URL).run()

    patch_logger.assert_present("Preflight checks passed")


@pytest.mark.asyncio
async def test_run_stops_at_the_first_failure(not_elevated, patch_logger):
    host = make_host()

    with pytest.raises(NotElevatedError):
        await PreflightCheck(_default_config(), host, ADMIN_URL).run()

    host.start.assert_not_awaited()
    assert patch_logger.at_level(logging.CRITICAL) == [
        "Preflight check failed: This tool must run with administrator privileges (elevated shell or root)"
    ]
