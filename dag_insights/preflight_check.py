#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
import asyncio
import os

import aiohttp

from dag_insights.config import SHAREPOINT_MODULE
from dag_insights.exceptions import (
    DependencyError,
    NotElevatedError,
    PowerShellError,
    SessionConnectionError,
)
from dag_insights.logger import logger
from dag_insights.powershell import quote

ENDPOINT_CHECK_TIMEOUT = 15

# Windows-only modules that PowerShell 7 loads through its compatibility layer
WINDOWS_POWERSHELL_MODULES = frozenset({SHAREPOINT_MODULE})


def is_elevated():
    if os.name == "nt":
        import ctypes

        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # pyright: ignore
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


class PreflightCheck:
    """Checks run before anything touches the tenant, in this order:

    1. the process is elevated
    2. PowerShell and the required modules are present (installed if missing)
    3. the tenant admin endpoint answers over HTTP

    Each check raises on failure and stops the run.
    """

    def __init__(self, config, host, admin_url):
        self.config = config
        self.host = host
        self.admin_url = admin_url
        self.service_config = config["service"]
        self.powershell_config = config.get("powershell", {}) or {}

    async def run(self):
        logger.info("Running preflight checks")
        try:
            self.check_elevation()
            await self.check_dependencies()
            await self.check_admin_endpoint()
        except (NotElevatedError, DependencyError, SessionConnectionError) as e:
            logger.critical(f"Preflight check failed: {e}")
            raise
        logger.info("Preflight checks passed")

    def check_elevation(self):
        if not self.service_config.get("check_elevation", True):
            logger.warning("Skipping the administrator privilege check")
            return

        if not is_elevated():
            msg = "This tool must run with administrator privileges (elevated shell or root)"
            raise NotElevatedError(msg)

    async def check_dependencies(self):
        await self.host.start()

        install = self.service_config.get("install_missing_modules", True)
        for module in self.powershell_config.get("modules") or []:
            if not await self._module_available(module):
                if not install:
                    msg = f"PowerShell module {module} is not installed"
                    raise DependencyError(msg)
                await self._install_module(module)
            await self._import_module(module)

    async def _module_available(self, module):
        try:
            return bool(
                await self.host.invoke(
                    f"[bool](Get-Module -ListAvailable -Name {quote(module)})"
                )
            )
        except PowerShellError as e:
            msg = f"Unable to look up PowerShell module {module}: {e}"
            raise DependencyError(msg) from e

    async def _install_module(self, module):
        logger.info(f"Installing PowerShell module {module}")
        try:
            await self.host.invoke(
                f"Install-Module -Name {quote(module)} -Scope AllUsers -Force -AllowClobber"
            )
        except PowerShellError as e:
            msg = f"Unable to install PowerShell module {module}: {e}"
            raise DependencyError(msg) from e

    async def _import_module(self, module):
        script = f"Import-Module -Name {quote(module)}"
        if module in WINDOWS_POWERSHELL_MODULES and self._needs_compatibility_layer():
            script += " -UseWindowsPowerShell"

        try:
            await self.host.invoke(script)
        except PowerShellError as e:
            msg = f"Unable to import PowerShell module {module}: {e}"
            raise DependencyError(msg) from e
        logger.info(f"PowerShell module {module} imported")

    def _needs_compatibility_layer(self):
        executable = os.path.basename(self.host.executable or "").lower()
        return os.name == "nt" and executable.startswith("pwsh")

    async def check_admin_endpoint(self):
        timeout = aiohttp.ClientTimeout(total=ENDPOINT_CHECK_TIMEOUT)
        session = aiohttp.ClientSession(timeout=timeout)

        try:
            async with session.get(self.admin_url, allow_redirects=False) as response:
                logger.info(
                    f"SharePoint admin center {self.admin_url} is reachable (status {response.status})"
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = f"SharePoint admin center {self.admin_url} is unreachable: {e}"
            raise SessionConnectionError(msg) from e
        finally:
            await session.close()
