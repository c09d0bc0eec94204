#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Report dispatcher.

Resolves which report entities a run covers, decides per entity whether the
combination of report type, workload, template and label settings can be
requested, and issues at most one `Start-SPODataAccessGovernanceInsight` call
per entity.

Decision table, first match wins:

1. Snapshot for anything but PermissionedUsers / SensitivityLabelForFiles: warn, skip
2. SensitivityLabelForFiles with RecentActivity: warn, skip
3. SensitivityLabelForFiles with the label check enabled: label sub-flow
4. SensitivityLabelForFiles without the label check: skip (opt-in)
5. PermissionedUsers: call with the report type forced to Snapshot
6. Template set: call with the template filter
7. Otherwise: call with entity, workload, report type and user threshold

When a single entity was requested, a skip ends the run. When "All" was
requested, the next entity is processed.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import click

from dag_insights.exceptions import (
    DagInsightsError,
    InputAbortedError,
    RemoteCallError,
    SessionConnectionError,
    ValidationError,
)
from dag_insights.labels import LabelPicker, resolve_user_principal_name
from dag_insights.logger import log_decision, logger
from dag_insights.protocol import (
    ORDERED_ENTITIES,
    SNAPSHOT_ENTITIES,
    CollectionSummary,
    ReportEntity,
    ReportRequest,
    ReportType,
    Workload,
    is_all_entities,
)

LABEL_WORKLOADS = frozenset({Workload.SHAREPOINT, Workload.ONEDRIVE_FOR_BUSINESS})


class Action(Enum):
    WARN_SKIP = "warn_skip"
    LABEL_FLOW = "label_flow"
    SILENT_SKIP = "silent_skip"
    CALL_PERMISSIONED_USERS = "call_permissioned_users"
    CALL_WITH_TEMPLATE = "call_with_template"
    CALL_BASIC = "call_basic"


CALL_ACTIONS = frozenset(
    {
        Action.LABEL_FLOW,
        Action.CALL_PERMISSIONED_USERS,
        Action.CALL_WITH_TEMPLATE,
        Action.CALL_BASIC,
    }
)


@dataclass(frozen=True)
class Decision:
    action: Action
    message: Optional[str] = None

    @property
    def issues_call(self):
        return self.action in CALL_ACTIONS


def resolve_entities(entity):
    if is_all_entities(entity):
        return list(ORDERED_ENTITIES)
    return [entity]


def decide(entity, config):
    if config.report_type == ReportType.SNAPSHOT and entity not in SNAPSHOT_ENTITIES:
        return Decision(
            Action.WARN_SKIP,
            "Snapshot is only valid for PermissionedUsers and SensitivityLabelForFiles",
        )

    if entity == ReportEntity.SENSITIVITY_LABEL_FOR_FILES:
        if (
            config.workload in LABEL_WORKLOADS
            and config.report_type == ReportType.RECENT_ACTIVITY
        ):
            return Decision(
                Action.WARN_SKIP,
                "SensitivityLabelForFiles requires Snapshot, RecentActivity is not supported",
            )
        if config.check_sensitivity_label:
            return Decision(Action.LABEL_FLOW)
        return Decision(
            Action.SILENT_SKIP,
            "Sensitivity label check is opt-in, enable it to request this report",
        )

    if entity == ReportEntity.PERMISSIONED_USERS:
        return Decision(Action.CALL_PERMISSIONED_USERS)

    if config.template is not None:
        return Decision(Action.CALL_WITH_TEMPLATE)

    return Decision(Action.CALL_BASIC)


def build_request(entity, decision, config, label=None):
    if decision.action == Action.CALL_PERMISSIONED_USERS:
        return ReportRequest(
            entity=entity,
            report_type=ReportType.SNAPSHOT,
            workload=config.workload,
            count_of_users_more_than=config.count_of_users_more_than,
        )

    if decision.action == Action.CALL_WITH_TEMPLATE:
        return ReportRequest(
            entity=entity,
            report_type=config.report_type,
            workload=config.workload,
            count_of_users_more_than=config.count_of_users_more_than,
            template=config.template,
            privacy=config.privacy,
        )

    if decision.action == Action.LABEL_FLOW:
        return ReportRequest(
            entity=entity,
            report_type=config.report_type,
            workload=config.workload,
            count_of_users_more_than=config.count_of_users_more_than,
            sensitivity_label=label,
        )

    if decision.action == Action.CALL_BASIC:
        return ReportRequest(
            entity=entity,
            report_type=config.report_type,
            workload=config.workload,
            count_of_users_more_than=config.count_of_users_more_than,
        )

    msg = f"No report request for {entity.value} ({decision.action.value})"
    raise ValidationError(msg)


class ReportDispatcher:
    """Runs one collection against explicit session handles.

    - sharepoint: a `SharePointAdminSession`-like object
    - compliance_factory: callable taking a user principal name and returning a
      `ComplianceSession`-like object
    - label_picker: object with a `choose(labels)` method
    """

    def __init__(
        self, sharepoint, compliance_factory, label_picker=None, prompt=click.prompt
    ):
        self.sharepoint = sharepoint
        self.compliance_factory = compliance_factory
        self.label_picker = label_picker or LabelPicker(prompt=prompt)
        self.prompt = prompt
        self.compliance = None
        self.identity_missing = False

    async def run_collection(self, config):
        self.identity_missing = False
        summary = CollectionSummary()
        entities = resolve_entities(config.entity)
        single = not config.processing_all

        try:
            await self.sharepoint.ensure_connected()
        except SessionConnectionError as e:
            logger.critical(f"SharePoint admin session unavailable: {e}")
            raise

        logger.info(
            f"Requesting {len(entities)} report entit{'y' if len(entities) == 1 else 'ies'} "
            f"(report type: {config.report_type.value}, workload: {config.workload.value})"
        )

        for entity in entities:
            decision = decide(entity, config)
            try:
                await self._process(entity, decision, config, summary, single)
            except ValidationError as e:
                log_decision(entity, "skip", str(e), level=logging.WARNING)
                summary.skipped.append(entity)
            except (RemoteCallError, InputAbortedError) as e:
                log_decision(entity, "failed", str(e), level=logging.ERROR)
                summary.skipped.append(entity)
            except SessionConnectionError as e:
                log_decision(entity, "fatal", str(e), level=logging.CRITICAL)
                summary.aborted = True
                raise
            else:
                continue

            if single:
                summary.aborted = True
                logger.warning(f"Stopping: {entity.value} was the only requested entity")
                break

        logger.info(
            f"{summary.generated} report(s) generated out of {summary.attempted} request(s)"
        )
        return summary

    async def _process(self, entity, decision, config, summary, single):
        if not decision.issues_call:
            if decision.action == Action.SILENT_SKIP and not single:
                log_decision(entity, "skip", decision.message, level=logging.DEBUG)
                summary.skipped.append(entity)
                return
            raise ValidationError(decision.message)

        label = None
        if decision.action == Action.LABEL_FLOW:
            label = await self._pick_label(config)

        request = build_request(entity, decision, config, label=label)
        await self._issue(request, decision, summary)

    async def _pick_label(self, config):
        try:
            user_principal_name = resolve_user_principal_name(
                config.user_principal_name, prompt=self.prompt
            )
        except InputAbortedError:
            self.identity_missing = True
            raise

        if self.compliance is None or not self.compliance.connected:
            self.compliance = self.compliance_factory(user_principal_name)
            await self.compliance.connect()

        labels = await self.compliance.list_labels()
        label = self.label_picker.choose(labels)
        log_decision(
            ReportEntity.SENSITIVITY_LABEL_FOR_FILES,
            "label",
            "Sensitivity label selected",
            label=label.display_name,
            label_id=label.id,
        )
        return label

    async def _issue(self, request, decision, summary):
        summary.attempted += 1
        result = await self.sharepoint.start_insight(request)
        summary.record(result)

        params = request.to_cmdlet_parameters()
        if result.succeeded:
            log_decision(
                request.entity,
                decision.action.value,
                f"Report {result.report_id} requested",
                **params,
            )
        else:
            log_decision(
                request.entity,
                decision.action.value,
                "Remote call returned no report id",
                level=logging.WARNING,
                **params,
            )

    async def teardown(self, config):
        """Closes the sessions this run is responsible for. Never raises."""
        compliance_needs_closing = self.identity_missing or (
            self.compliance is not None and self.compliance.opened
        )
        if compliance_needs_closing:
            compliance = self.compliance or self.compliance_factory(
                config.user_principal_name
            )
            try:
                await compliance.disconnect()
            except DagInsightsError as e:
                logger.warning(f"Security & Compliance center disconnect failed: {e}")
            finally:
                self.compliance = None
                self.identity_missing = False

        if config.disconnect:
            try:
                await self.sharepoint.disconnect()
            except DagInsightsError as e:
                logger.warning(f"SharePoint admin center disconnect failed: {e}")
        else:
            logger.info("Keeping the SharePoint admin session open")
