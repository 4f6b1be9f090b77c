# payload.py
"""
Typed builder for issue create/update bodies.

Standard fields are typed; custom fields are carried as (id, value) pairs and
their contents are not validated, since their schema is only known to Jira.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from jira_bridge.adf import text_to_adf


@dataclass(frozen=True)
class TextValue:
    """A rich-text field, sent as an ADF document."""
    text: str

    def to_value(self) -> Any:
        return text_to_adf(self.text)


@dataclass(frozen=True)
class KeyRef:
    """A reference by key, e.g. project {"key": "PROJ"} or parent issue."""
    key: str

    def to_value(self) -> Any:
        return {"key": self.key}


@dataclass(frozen=True)
class NameRef:
    """A reference by name, e.g. issuetype {"name": "Story"} or priority."""
    name: str

    def to_value(self) -> Any:
        return {"name": self.name}


@dataclass(frozen=True)
class StringList:
    values: List[str]

    def to_value(self) -> Any:
        return list(self.values)


@dataclass(frozen=True)
class RawValue:
    """Passed through as-is."""
    value: Any

    def to_value(self) -> Any:
        return self.value


FieldValue = Union[TextValue, KeyRef, NameRef, StringList, RawValue]


@dataclass(frozen=True)
class CustomField:
    field_id: str
    value: Any


def _as_field_value(value: Any) -> FieldValue:
    if isinstance(value, (TextValue, KeyRef, NameRef, StringList, RawValue)):
        return value
    return RawValue(value)


@dataclass
class IssuePayload:
    """
    Fields of an issue create or update request.

    Only fields that were set end up in the body, so the same builder serves
    both full creates and partial updates.
    """
    project_key: Optional[str] = None
    summary: Optional[str] = None
    issue_type: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    assignee_account_id: Optional[str] = None
    labels: Optional[List[str]] = None
    components: Optional[List[str]] = None
    parent_key: Optional[str] = None
    due_date: Optional[str] = None
    original_estimate: Optional[str] = None
    remaining_estimate: Optional[str] = None
    custom_fields: List[CustomField] = field(default_factory=list)

    def set_custom(self, field_id: str, value: Any) -> "IssuePayload":
        """Adds or replaces a custom field value. Returns self for chaining."""
        self.custom_fields = [f for f in self.custom_fields if f.field_id != field_id]
        self.custom_fields.append(CustomField(field_id, value))
        return self

    def standard_fields(self) -> Dict[str, FieldValue]:
        fields: Dict[str, FieldValue] = {}
        if self.project_key:
            fields["project"] = KeyRef(self.project_key)
        if self.summary is not None:
            fields["summary"] = RawValue(self.summary)
        if self.issue_type:
            fields["issuetype"] = NameRef(self.issue_type)
        if self.description:
            fields["description"] = TextValue(self.description)
        if self.priority:
            fields["priority"] = NameRef(self.priority)
        if self.assignee_account_id:
            fields["assignee"] = RawValue({"accountId": self.assignee_account_id})
        if self.labels is not None:
            fields["labels"] = StringList(self.labels)
        if self.components is not None:
            fields["components"] = RawValue([{"name": c} for c in self.components])
        if self.parent_key:
            fields["parent"] = KeyRef(self.parent_key)
        if self.due_date:
            fields["duedate"] = RawValue(self.due_date)
        tracking = {}
        if self.original_estimate:
            tracking["originalEstimate"] = self.original_estimate
        if self.remaining_estimate:
            tracking["remainingEstimate"] = self.remaining_estimate
        if tracking:
            fields["timetracking"] = RawValue(tracking)
        return fields

    def to_dict(self) -> Dict[str, Any]:
        body = {name: value.to_value() for name, value in self.standard_fields().items()}
        for custom in self.custom_fields:
            body[custom.field_id] = _as_field_value(custom.value).to_value()
        return {"fields": body}


def as_body(payload: Union[IssuePayload, Dict[str, Any]]) -> Dict[str, Any]:
    """Accepts a builder or a raw body. Raw dicts without a "fields" key are wrapped."""
    if isinstance(payload, IssuePayload):
        return payload.to_dict()
    if "fields" in payload or "update" in payload:
        return payload
    return {"fields": payload}
