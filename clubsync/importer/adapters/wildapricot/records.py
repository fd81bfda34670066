"""
Typed views of the Wild Apricot payloads consumed by the sync engine.

Field names mirror the API's PascalCase keys; nothing past the transform layer
should read these keys directly.
"""

from __future__ import annotations

from typing import List, Optional, TypedDict, Union


class WAFieldValue(TypedDict, total=False):
    FieldName: str
    SystemCode: str
    Value: Union[str, int, float, bool, dict, list, None]


class WAResourceRef(TypedDict, total=False):
    Id: int
    Name: str
    Url: str


class WAContact(TypedDict, total=False):
    Id: int
    FirstName: Optional[str]
    LastName: Optional[str]
    Email: Optional[str]
    DisplayName: Optional[str]
    Organization: Optional[str]
    Status: Optional[str]
    MembershipLevel: Optional[WAResourceRef]
    MemberSince: Optional[str]
    CreationDate: Optional[str]
    ProfileLastUpdated: Optional[str]
    IsSuspendedMember: bool
    FieldValues: List[WAFieldValue]


class WAOrganizer(TypedDict, total=False):
    Id: int
    Name: Optional[str]
    Email: Optional[str]


class WAEventDetails(TypedDict, total=False):
    DescriptionHtml: Optional[str]
    Organizer: Optional[WAOrganizer]


class WAEvent(TypedDict, total=False):
    Id: int
    Name: Optional[str]
    StartDate: Optional[str]
    EndDate: Optional[str]
    Location: Optional[str]
    AccessLevel: Optional[str]
    Tags: List[str]
    RegistrationEnabled: bool
    RegistrationsLimit: Optional[int]
    ConfirmedRegistrationsCount: int
    Details: Optional[WAEventDetails]


class WAEventRegistration(TypedDict, total=False):
    Id: int
    Event: WAResourceRef
    Contact: WAResourceRef
    RegistrationType: Optional[WAResourceRef]
    Status: Optional[str]
    OnWaitlist: bool
    IsCheckedIn: bool
    RegistrationFee: Optional[float]
    PaidSum: Optional[float]
    RegistrationDate: Optional[str]
    Memo: Optional[str]


class WAMembershipLevel(TypedDict, total=False):
    Id: int
    Name: str
    MembershipFee: Optional[float]
    Url: str


class WAAsyncResult(TypedDict, total=False):
    State: str
    ErrorDetails: object
    ResultUrl: str
