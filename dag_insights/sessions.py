#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Handles on the two remote sessions a run needs: the SharePoint Online admin
center, which creates and reports on Data Access Governance insights, and the
Security & Compliance center, which lists sensitivity labels.

Both are explicit objects handed to the dispatcher, so tests can swap them
for fakes.
"""
from dag_insights.exceptions import (
    PowerShellError,
    RemoteCallError,
    SessionConnectionError,
)
from dag_insights.logger import logger
from dag_insights.powershell import as_list, format_parameters, quote
from dag_insights.protocol import (
    ORDERED_ENTITIES,
    InsightRecord,
    ReportResult,
    SensitivityLabel,
)


class SharePointAdminSession:
    def __init__(self, host, admin_url):
        self.host = host
        self.admin_url = admin_url
        self.connected = False

    async def is_alive(self):
        try:
            await self.host.invoke("Get-SPOTenant | Out-Null; $true")
            return True
        except PowerShellError as e:
            logger.debug(f"No usable SharePoint admin session: {e}")
            return False

    async def ensure_connected(self):
        """Reuses a live session, connects otherwise."""
        if await self.is_alive():
            logger.info(f"Reusing existing session to {self.admin_url}")
            self.connected = True
            return

        await self.connect()

    async def connect(self):
        logger.info(f"Connecting to SharePoint admin center {self.admin_url}")
        try:
            await self.host.invoke(f"Connect-SPOService -Url {quote(self.admin_url)}")
        except PowerShellError as e:
            msg = f"Unable to connect to {self.admin_url}: {e}"
            raise SessionConnectionError(msg) from e

        self.connected = True
        logger.info(f"Connected to {self.admin_url}")

    async def disconnect(self):
        try:
            await self.host.invoke("Disconnect-SPOService")
            logger.info(f"Disconnected from {self.admin_url}")
        except PowerShellError as e:
            logger.warning(f"Unable to disconnect from {self.admin_url}: {e}")
        finally:
            self.connected = False

    async def start_insight(self, request):
        """Creates a report. Returns a `ReportResult`, raises `RemoteCallError`."""
        params = request.to_cmdlet_parameters()
        try:
            data = await self.host.invoke(
                f"Start-SPODataAccessGovernanceInsight {format_parameters(params)}"
            )
        except PowerShellError as e:
            msg = f"Start-SPODataAccessGovernanceInsight failed for {request.entity.value}: {e}"
            raise RemoteCallError(msg) from e

        report_id = None
        for item in as_list(data):
            if isinstance(item, dict):
                report_id = item.get("ReportId") or item.get("Id")
            elif item:
                report_id = str(item)
            if report_id:
                break

        return ReportResult(report_id=report_id, source_request=request)

    async def get_insights(self, entity=None, report_id=None):
        """Reports known to the tenant, through the report status endpoint."""
        entities = [entity] if entity is not None else list(ORDERED_ENTITIES)
        records = []
        for report_entity in entities:
            params = {"ReportEntity": report_entity.value, "ReportId": report_id}
            try:
                data = await self.host.invoke(
                    f"Get-SPODataAccessGovernanceInsight {format_parameters(params)}"
                )
            except PowerShellError as e:
                msg = f"Get-SPODataAccessGovernanceInsight failed for {report_entity.value}: {e}"
                raise RemoteCallError(msg) from e

            records.extend(
                InsightRecord.from_remote(item)
                for item in as_list(data)
                if isinstance(item, dict)
            )
        return records

    async def export_insight(self, report_id, download_path, entity=None):
        """Downloads a report's CSV through the report export endpoint."""
        params = {
            "ReportEntity": entity.value if entity is not None else None,
            "ReportId": report_id,
            "DownloadPath": download_path,
        }
        try:
            await self.host.invoke(
                f"Export-SPODataAccessGovernanceInsight {format_parameters(params)}"
            )
        except PowerShellError as e:
            msg = f"Export-SPODataAccessGovernanceInsight failed for report {report_id}: {e}"
            raise RemoteCallError(msg) from e

        logger.info(f"Report {report_id} exported to {download_path}")
        return download_path


class ComplianceSession:
    def __init__(self, host, user_principal_name):
        self.host = host
        self.user_principal_name = user_principal_name
        self.connected = False
        self.opened = False

    async def connect(self):
        logger.info(
            f"Connecting to Security & Compliance center as {self.user_principal_name}"
        )
        self.opened = True
        params = {"UserPrincipalName": self.user_principal_name, "ShowBanner": False}
        try:
            await self.host.invoke(f"Connect-IPPSSession {format_parameters(params)}")
        except PowerShellError as e:
            msg = f"Unable to connect to Security & Compliance center: {e}"
            raise SessionConnectionError(msg) from e

        self.connected = True
        logger.info("Connected to Security & Compliance center")

    async def disconnect(self):
        try:
            await self.host.invoke("Disconnect-ExchangeOnline -Confirm:$false")
            logger.info("Disconnected from Security & Compliance center")
        except PowerShellError as e:
            logger.warning(f"Unable to disconnect from Security & Compliance center: {e}")
        finally:
            self.connected = False

    async def list_labels(self):
        try:
            data = await self.host.invoke(
                "Get-Label | ForEach-Object { [pscustomobject]@{ "
                "DisplayName = $_.DisplayName; Guid = \"$($_.Guid)\" } }"
            )
        except PowerShellError as e:
            msg = f"Unable to list sensitivity labels: {e}"
            raise RemoteCallError(msg) from e

        return [
            SensitivityLabel.from_remote(item)
            for item in as_list(data)
            if isinstance(item, dict)
        ]
