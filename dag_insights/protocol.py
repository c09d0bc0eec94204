#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
"""
Data Access Governance report vocabulary: the closed sets of report entities,
report types, workloads, site templates and privacy filters accepted by
`Start-SPODataAccessGovernanceInsight`, and the value objects exchanged with it.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from dag_insights.exceptions import ValidationError

ALL_ENTITIES = "All"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class ReportEntity(Enum):
    SHARING_LINKS_ANYONE = "SharingLinks_Anyone"
    SHARING_LINKS_PEOPLE_IN_YOUR_ORG = "SharingLinks_PeopleInYourOrg"
    SHARING_LINKS_GUESTS = "SharingLinks_Guests"
    SENSITIVITY_LABEL_FOR_FILES = "SensitivityLabelForFiles"
    EVERYONE_EXCEPT_EXTERNAL_USERS_AT_SITE = "EveryoneExceptExternalUsersAtSite"
    EVERYONE_EXCEPT_EXTERNAL_USERS_FOR_ITEMS = "EveryoneExceptExternalUsersForItems"
    PERMISSIONED_USERS = "PermissionedUsers"


class ReportType(Enum):
    SNAPSHOT = "Snapshot"
    RECENT_ACTIVITY = "RecentActivity"


class Workload(Enum):
    SHAREPOINT = "SharePoint"
    ONEDRIVE_FOR_BUSINESS = "OneDriveForBusiness"


class SiteTemplate(Enum):
    ALL_SITES = "AllSites"
    CLASSIC_SITES = "ClassicSites"
    COMMUNICATION_SITES = "CommunicationSites"
    TEAM_SITES_NOT_CONNECTED_TO_TEAMS = "TeamSitesnotconnectedtoTeams"
    TEAM_SITES_CONNECTED_TO_TEAMS = "TeamSitesconnectedtoTeams"


class Privacy(Enum):
    ALL = "All"
    PRIVATE = "Private"
    PUBLIC = "Public"


# Order matters: "All" requests these one after the other.
ORDERED_ENTITIES = (
    ReportEntity.SHARING_LINKS_ANYONE,
    ReportEntity.SHARING_LINKS_PEOPLE_IN_YOUR_ORG,
    ReportEntity.SHARING_LINKS_GUESTS,
    ReportEntity.SENSITIVITY_LABEL_FOR_FILES,
    ReportEntity.EVERYONE_EXCEPT_EXTERNAL_USERS_AT_SITE,
    ReportEntity.EVERYONE_EXCEPT_EXTERNAL_USERS_FOR_ITEMS,
    ReportEntity.PERMISSIONED_USERS,
)

SNAPSHOT_ENTITIES = frozenset(
    {ReportEntity.PERMISSIONED_USERS, ReportEntity.SENSITIVITY_LABEL_FOR_FILES}
)


def parse_enum(enum_klass, value):
    """Case-insensitive lookup of an enum member by its remote tag.

    Members are returned unchanged, `None` stays `None`.
    """
    if value is None or isinstance(value, enum_klass):
        return value

    for member in enum_klass:
        if member.value.lower() == str(value).strip().lower():
            return member

    allowed = ", ".join(member.value for member in enum_klass)
    msg = f"'{value}' is not a valid {enum_klass.__name__}. Allowed values: {allowed}"
    raise ValueError(msg)


def is_all_entities(value):
    return isinstance(value, str) and value.strip().lower() == ALL_ENTITIES.lower()


@dataclass(frozen=True)
class SensitivityLabel:
    display_name: str
    id: str  # noqa: A003

    @classmethod
    def from_remote(cls, payload):
        return cls(
            display_name=payload.get("DisplayName") or payload.get("Name") or "",
            id=str(payload.get("Guid") or payload.get("ImmutableId") or ""),
        )


@dataclass(frozen=True)
class ReportRequest:
    """One `Start-SPODataAccessGovernanceInsight` invocation.

    Built fresh for every entity and never mutated afterwards.
    """

    entity: ReportEntity
    report_type: ReportType = ReportType.RECENT_ACTIVITY
    workload: Workload = Workload.SHAREPOINT
    count_of_users_more_than: int = 0
    template: Optional[SiteTemplate] = None
    privacy: Privacy = Privacy.ALL
    sensitivity_label: Optional[SensitivityLabel] = None
    name: Optional[str] = None

    def __post_init__(self):
        if (
            self.sensitivity_label is not None
            and self.entity != ReportEntity.SENSITIVITY_LABEL_FOR_FILES
        ):
            msg = f"A sensitivity label can only be attached to a {ReportEntity.SENSITIVITY_LABEL_FOR_FILES.value} report, not {self.entity.value}"
            raise ValidationError(msg)

        if (
            self.report_type == ReportType.SNAPSHOT
            and self.entity not in SNAPSHOT_ENTITIES
        ):
            msg = f"Snapshot reports are only valid for {ReportEntity.PERMISSIONED_USERS.value} and {ReportEntity.SENSITIVITY_LABEL_FOR_FILES.value}, not {self.entity.value}"
            raise ValidationError(msg)

        if self.count_of_users_more_than < 0:
            msg = f"CountOfUsersMoreThan must be a non-negative integer, got {self.count_of_users_more_than}"
            raise ValidationError(msg)

        if self.name is None:
            object.__setattr__(self, "name", self.default_name())

    def default_name(self):
        timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
        return f"{self.entity.value}_{self.workload.value}_{self.report_type.value}_{timestamp}"

    def to_cmdlet_parameters(self):
        """Parameters sent to the remote call, in cmdlet naming."""
        params = {
            "ReportEntity": self.entity.value,
            "Workload": self.workload.value,
            "ReportType": self.report_type.value,
            "CountOfUsersMoreThan": self.count_of_users_more_than,
        }

        if self.template is not None:
            params["Template"] = self.template.value
            params["Privacy"] = self.privacy.value

        if self.sensitivity_label is not None:
            params["FileSensitivityLabelGUID"] = self.sensitivity_label.id
            params["FileSensitivityLabelName"] = self.sensitivity_label.display_name

        params["Name"] = self.name
        return params


@dataclass(frozen=True)
class ReportResult:
    report_id: Optional[str]
    source_request: ReportRequest

    @property
    def succeeded(self):
        return bool(self.report_id)


@dataclass
class InsightRecord:
    """A row of `Get-SPODataAccessGovernanceInsight`, the report status endpoint."""

    report_id: str
    name: Optional[str] = None
    entity: Optional[str] = None
    workload: Optional[str] = None
    report_type: Optional[str] = None
    status: Optional[str] = None
    created: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @classmethod
    def from_remote(cls, payload):
        return cls(
            report_id=str(payload.get("ReportId") or ""),
            name=payload.get("Name"),
            entity=payload.get("ReportEntity"),
            workload=payload.get("Workload"),
            report_type=payload.get("ReportType"),
            status=payload.get("Status"),
            created=payload.get("CreatedDateTime"),
            start_time=payload.get("ReportStartTime"),
            end_time=payload.get("ReportEndTime"),
        )


@dataclass
class CollectionSummary:
    """What a dispatcher run did, returned once at the end of the run."""

    attempted: int = 0
    generated: int = 0
    results: List[ReportResult] = field(default_factory=list)
    skipped: List[ReportEntity] = field(default_factory=list)
    aborted: bool = False

    def record(self, result):
        self.results.append(result)
        if result.succeeded:
            self.generated += 1
