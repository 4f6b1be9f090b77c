# server.py
import argparse
import asyncio
import base64
import binascii
import json
import logging
import mimetypes
import re
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel, Field

from jira_bridge.adf import adf_to_text
from jira_bridge.config import Settings
from jira_bridge.dates import parse_date, parse_time_estimate
from jira_bridge.errors import JiraApiError, mentions_custom_field
from jira_bridge.field_resolver import FieldResolver, FieldRole, match_role
from jira_bridge.jira_client import JiraClient
from jira_bridge.names import normalize_issue_type
from jira_bridge.payload import IssuePayload, TextValue
from jira_bridge.transport import CallOutcome, Transport

# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()  # stderr; stdout carries the MCP stdio stream
    ]
)
logger = logging.getLogger(__name__)
# Request logs from httpx include URLs and headers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

DIAGNOSE_HINT = "Run diagnose_fields to find the correct custom field ids for this project."
TEST_LINK_TYPE = "Test Case Linking"
EPIC_TYPE = "Epic"
SUBTASK_TYPE = "Subtask"
TASK_TYPE = "Task"
TEST_TYPE = "Test"


@dataclass
class JiraBridge:
    """Process-wide collaborators shared by all tools."""
    settings: Settings
    client: JiraClient
    resolver: FieldResolver

    @classmethod
    def from_settings(cls, settings: Settings) -> "JiraBridge":
        transport = Transport(
            settings.JIRA_HOST,
            settings.JIRA_EMAIL,
            settings.JIRA_API_TOKEN,
            policy=settings.retry_policy(),
            timeout=settings.REQUEST_TIMEOUT,
        )
        client = JiraClient(transport)
        resolver = FieldResolver(
            client,
            overrides=settings.field_overrides(),
            auto_detect=settings.JIRA_AUTO_DETECT_FIELDS,
        )
        return cls(settings=settings, client=client, resolver=resolver)


_bridge: Optional[JiraBridge] = None

# --- MCP Server Definition ---
mcp = FastMCP(
    "Jira Bridge",
    dependencies=["httpx", "tenacity", "pydantic-settings"]
)


def _get_bridge() -> JiraBridge:
    """Builds the bridge from Settings on first use."""
    global _bridge
    if _bridge is None:
        _bridge = JiraBridge.from_settings(Settings())
    return _bridge


# --- Helpers ---

def _unwrap(outcome: CallOutcome, action: str) -> Any:
    if not outcome.ok:
        logger.error(f"Jira API error {action}: {outcome.message}")
    return outcome.unwrap()


def _project_key(bridge: JiraBridge, project: Optional[str]) -> str:
    key = project or bridge.settings.JIRA_DEFAULT_PROJECT
    if not key:
        raise ValueError("Project key is required. Specify a project or set JIRA_DEFAULT_PROJECT.")
    return key


def _project_of(issue_key: str) -> str:
    return issue_key.rsplit("-", 1)[0]


def issue_link(host: str, issue_key: str) -> str:
    return f"{host.rstrip('/')}/browse/{issue_key}"


def _name_of(value: Optional[Dict[str, Any]], key: str = "name") -> Optional[str]:
    return value.get(key) if isinstance(value, dict) else None


def format_issue(issue: Dict[str, Any], host: str) -> Dict[str, Any]:
    """Flattens a Jira issue into the fields an agent usually needs."""
    fields = issue.get("fields") or {}
    return {
        "key": issue.get("key"),
        "summary": fields.get("summary"),
        "status": _name_of(fields.get("status")),
        "issue_type": _name_of(fields.get("issuetype")),
        "priority": _name_of(fields.get("priority")),
        "assignee": _name_of(fields.get("assignee"), "displayName"),
        "reporter": _name_of(fields.get("reporter"), "displayName"),
        "labels": fields.get("labels") or [],
        "created": fields.get("created"),
        "updated": fields.get("updated"),
        "due_date": fields.get("duedate"),
        "parent": _name_of(fields.get("parent"), "key"),
        "description": adf_to_text(fields.get("description")),
        "link": issue_link(host, issue["key"]) if issue.get("key") else None,
    }


def _apply_role_fields(payload: IssuePayload, fields: Dict[FieldRole, str],
                       values: Dict[FieldRole, Any], warnings: List[str]) -> None:
    for role, value in values.items():
        if value is None:
            continue
        field_id = fields.get(role)
        if not field_id:
            logger.warning(f"No field found for {role.value}, value omitted")
            warnings.append(f"No '{role.value}' field found in this project; value was not set.")
            continue
        payload.set_custom(field_id, value)


def build_jql(project: Optional[str] = None, issue_type: Optional[str] = None,
              assignee: Optional[str] = None, status: Optional[str] = None,
              labels: Optional[List[str]] = None, due_before: Optional[str] = None,
              due_after: Optional[str] = None, created_after: Optional[str] = None,
              created_before: Optional[str] = None, updated_after: Optional[str] = None) -> str:
    """Builds a JQL query from simple filters. Dates accept anything parse_date understands."""
    conditions = []
    if project:
        conditions.append(f'project = "{project}"')
    if issue_type:
        conditions.append(f'issuetype = "{issue_type}"')
    if assignee:
        value = "currentUser()" if assignee == "currentUser" else f'"{assignee}"'
        conditions.append(f"assignee = {value}")
    if status:
        conditions.append(f'status = "{status}"')
    if labels:
        conditions.append("labels in (" + ", ".join(f'"{label}"' for label in labels) + ")")
    for jql_field, operator, value in (
        ("due", "<", due_before),
        ("due", ">", due_after),
        ("created", "<", created_before),
        ("created", ">", created_after),
        ("updated", ">", updated_after),
    ):
        if value:
            conditions.append(f'{jql_field} {operator} "{parse_date(value)}"')
    if not conditions:
        return ""
    return " AND ".join(conditions) + " ORDER BY updated DESC"


def _sprint_datetime(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    parsed = parse_date(value)
    if re.match(r"^\d{4}-\d{2}-\d{2}$", parsed):
        return f"{parsed}T00:00:00.000Z"
    return parsed


# --- Issue Tools ---

@mcp.tool("create_issue", description="Creates a Jira issue. Custom fields (story points, acceptance criteria, epic link, start date) are mapped automatically; dates accept '2024-12-31', '31.12.2024', 'tomorrow', '+7d'.")
async def create_issue(summary: str, issue_type: str, project: Optional[str] = None,
                       description: Optional[str] = None, assignee: Optional[str] = None,
                       priority: Optional[str] = None, labels: Optional[List[str]] = None,
                       components: Optional[List[str]] = None, story_points: Optional[float] = None,
                       acceptance_criteria: Optional[str] = None, epic_link: Optional[str] = None,
                       parent: Optional[str] = None, due_date: Optional[str] = None,
                       start_date: Optional[str] = None, original_estimate: Optional[str] = None,
                       create_test_ticket: Optional[bool] = None) -> Dict[str, Any]:
    """
    Creates an issue and, for stories, optionally a linked test ticket.

    Args:
        summary: Issue title.
        issue_type: Issue type name, English or localized ("Story", "Úkol").
        project: Project key. Falls back to JIRA_DEFAULT_PROJECT.
        assignee: Account id of the assignee.
        epic_link: Epic key, set through the project's epic link field.
        parent: Parent key (required for subtasks).
        create_test_ticket: Overrides AUTO_CREATE_TEST_TICKETS for this call.

    Returns:
        The new issue key, link and any warnings about fields that could not be set.
    """
    bridge = _get_bridge()
    project_key = _project_key(bridge, project)
    logger.info(f"Executing create_issue in {project_key} (type {issue_type})")
    warnings: List[str] = []

    payload = IssuePayload(
        project_key=project_key,
        summary=summary,
        issue_type=issue_type,
        description=description,
        priority=priority,
        assignee_account_id=assignee,
        labels=labels,
        components=components,
        parent_key=parent,
        due_date=parse_date(due_date) if due_date else None,
        original_estimate=parse_time_estimate(original_estimate) if original_estimate else None,
    )
    fields = await bridge.resolver.resolve(project_key, issue_type)
    _apply_role_fields(payload, fields, {
        FieldRole.STORY_POINTS: story_points,
        FieldRole.ACCEPTANCE_CRITERIA: TextValue(acceptance_criteria) if acceptance_criteria else None,
        FieldRole.EPIC_LINK: epic_link,
        FieldRole.START_DATE: parse_date(start_date) if start_date else None,
    }, warnings)

    try:
        result = await bridge.client.create_issue(payload)
        if not result.ok and epic_link and mentions_custom_field(result.message):
            raise JiraApiError(f"{result.message}. The epic link field may be wrong. {DIAGNOSE_HINT}",
                               status=result.status)
        created = _unwrap(result, "creating issue")
        issue_key = created.get("key")
        if not issue_key:
            raise RuntimeError("Invalid response from Jira: missing issue key")
    except (ValueError, JiraApiError) as e:
        logger.error(f"Failed to create issue in {project_key}: {e}", exc_info=False)
        raise e
    except Exception as e:
        logger.error(f"Unexpected error creating issue in {project_key}: {e}", exc_info=True)
        raise RuntimeError(f"Server error creating issue: {e}")

    logger.info(f"Issue {issue_key} created successfully.")
    response: Dict[str, Any] = {
        "key": issue_key,
        "id": created.get("id"),
        "summary": summary,
        "link": issue_link(bridge.client.host, issue_key),
        "warnings": warnings,
    }

    wants_test = create_test_ticket if create_test_ticket is not None else bridge.settings.AUTO_CREATE_TEST_TICKETS
    if wants_test and normalize_issue_type(issue_type) == "Story":
        response["test_ticket"] = await _create_test_ticket(bridge, project_key, issue_key, summary)
    return response


async def _create_test_ticket(bridge: JiraBridge, project_key: str, story_key: str,
                              summary: str) -> Dict[str, Any]:
    logger.info(f"Creating test ticket for story {story_key}")
    test_payload = IssuePayload(
        project_key=project_key,
        issue_type=await bridge.resolver.issue_type_name(project_key, TEST_TYPE),
        summary=f"Test: {summary}",
        description=(f"Test ticket for {story_key}\n\n"
                     f"This test ticket was automatically created for story {story_key}."),
    )
    result = await bridge.client.create_issue(test_payload)
    if not result.ok or not result.payload.get("key"):
        error = result.message if not result.ok else "missing issue key"
        logger.warning(f"Failed to create test ticket for {story_key}: {error}")
        return {"created": False, "error": error}

    test_key = result.payload["key"]
    link = await bridge.client.link_issues_resolving_type(story_key, test_key, TEST_LINK_TYPE)
    if not link.ok:
        logger.warning(f"Test ticket {test_key} created but linking failed: {link.message}")
        return {"created": True, "key": test_key, "linked": False, "error": link.message}
    logger.info(f"Test ticket {test_key} linked to story {story_key}")
    return {"created": True, "key": test_key, "linked": True}


@mcp.tool("update_issue", description="Updates fields of an existing issue. Only the given fields change. Use parent or epic_link to move an issue under an epic.")
async def update_issue(issue_key: str, summary: Optional[str] = None, description: Optional[str] = None,
                       assignee: Optional[str] = None, priority: Optional[str] = None,
                       labels: Optional[List[str]] = None, story_points: Optional[float] = None,
                       acceptance_criteria: Optional[str] = None, due_date: Optional[str] = None,
                       start_date: Optional[str] = None, original_estimate: Optional[str] = None,
                       remaining_estimate: Optional[str] = None, parent: Optional[str] = None,
                       epic_link: Optional[str] = None) -> Dict[str, Any]:
    """
    Updates an issue. Custom fields are resolved against the issue's project.

    To move an issue under an epic, pass `parent` (team-managed projects) or
    `epic_link` (company-managed projects with an Epic Link field).
    """
    bridge = _get_bridge()
    logger.info(f"Executing update_issue for {issue_key}")
    warnings: List[str] = []

    payload = IssuePayload(
        summary=summary,
        description=description,
        priority=priority,
        assignee_account_id=assignee,
        labels=labels,
        due_date=parse_date(due_date) if due_date else None,
        original_estimate=parse_time_estimate(original_estimate) if original_estimate else None,
        remaining_estimate=parse_time_estimate(remaining_estimate) if remaining_estimate else None,
        parent_key=parent,
    )
    role_values = {
        FieldRole.STORY_POINTS: story_points,
        FieldRole.ACCEPTANCE_CRITERIA: TextValue(acceptance_criteria) if acceptance_criteria else None,
        FieldRole.START_DATE: parse_date(start_date) if start_date else None,
        FieldRole.EPIC_LINK: epic_link,
    }
    if any(v is not None for v in role_values.values()):
        fields = await bridge.resolver.resolve(_project_of(issue_key))
        _apply_role_fields(payload, fields, role_values, warnings)

    body = payload.to_dict()
    if not body["fields"]:
        raise ValueError("No fields to update were provided.")

    result = await bridge.client.update_issue(issue_key, body)
    if not result.ok and mentions_custom_field(result.message):
        raise JiraApiError(f"{result.message}. {DIAGNOSE_HINT}", status=result.status)
    _unwrap(result, f"updating {issue_key}")
    logger.info(f"Issue {issue_key} updated: {list(body['fields'])}")
    return {
        "key": issue_key,
        "updated_fields": list(body["fields"]),
        "link": issue_link(bridge.client.host, issue_key),
        "warnings": warnings,
    }


@mcp.tool("get_issue", description="Gets an issue by key, with its description converted to text.")
async def get_issue(issue_key: str, expand: Optional[List[str]] = None) -> Dict[str, Any]:
    """Gets issue details. `expand` is passed to Jira (e.g. ["changelog", "renderedFields"])."""
    bridge = _get_bridge()
    logger.info(f"Executing get_issue for {issue_key}")
    issue = _unwrap(await bridge.client.get_issue(issue_key, expand), f"getting {issue_key}")
    return format_issue(issue, bridge.client.host)


@mcp.tool("search_issues", description="Searches issues with JQL, or builds the JQL from filters (project, issue_type, assignee ('currentUser' for yourself), status, labels, date ranges).")
async def search_issues(jql: Optional[str] = None, project: Optional[str] = None,
                        issue_type: Optional[str] = None, assignee: Optional[str] = None,
                        status: Optional[str] = None, labels: Optional[List[str]] = None,
                        due_before: Optional[str] = None, due_after: Optional[str] = None,
                        created_after: Optional[str] = None, created_before: Optional[str] = None,
                        updated_after: Optional[str] = None, max_results: int = 20) -> Dict[str, Any]:
    bridge = _get_bridge()
    query = jql or build_jql(project, issue_type, assignee, status, labels, due_before, due_after,
                             created_after, created_before, updated_after)
    if not query:
        if not bridge.settings.JIRA_DEFAULT_PROJECT:
            raise ValueError("Provide a JQL query or at least one filter.")
        query = build_jql(project=bridge.settings.JIRA_DEFAULT_PROJECT)
    logger.info(f"Executing search_issues: {query}")

    found = _unwrap(await bridge.client.search_issues(query, max_results), "searching issues")
    issues = [format_issue(issue, bridge.client.host) for issue in found.get("issues", [])]
    return {"jql": query, "count": len(issues), "issues": issues}


@mcp.tool("transition_issue", description="Moves an issue through its workflow by transition name (e.g. 'In Progress', 'Done').")
async def transition_issue(issue_key: str, transition_name: str) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing transition_issue for {issue_key} -> '{transition_name}'")
    available = _unwrap(await bridge.client.get_transitions(issue_key),
                        f"getting transitions for {issue_key}").get("transitions", [])

    wanted = transition_name.strip().lower()

    def matches(t: Dict[str, Any]) -> bool:
        target_status = _name_of(t.get("to")) or ""
        return t.get("name", "").lower() == wanted or target_status.lower() == wanted

    transition = next((t for t in available if matches(t)), None)
    if transition is None:
        names = ", ".join(t.get("name", "") for t in available) or "None"
        logger.warning(f"Transition '{transition_name}' not found for {issue_key}. Available: {names}")
        raise ValueError(f"Transition '{transition_name}' not found. Available transitions: {names}")

    _unwrap(await bridge.client.transition_issue(issue_key, transition["id"]),
            f"transitioning {issue_key}")
    logger.info(f"Issue {issue_key} transitioned via '{transition['name']}'")
    return {
        "key": issue_key,
        "transition": transition["name"],
        "status": _name_of(transition.get("to")),
    }


@mcp.tool("link_issues", description="Links two issues. Accepts link type names, their inward/outward phrases, or localized names; epic relations must use parent instead.")
async def link_issues(inward_issue: str, outward_issue: str, link_type: str = "Relates") -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing link_issues {inward_issue} -> {outward_issue} ({link_type})")
    _unwrap(await bridge.client.link_issues_resolving_type(inward_issue, outward_issue, link_type),
            f"linking {inward_issue} and {outward_issue}")
    return {"status": "linked", "inward_issue": inward_issue, "outward_issue": outward_issue,
            "link_type": link_type}


@mcp.tool("get_link_types", description="Lists the issue link types configured in Jira.")
async def get_link_types() -> List[Dict[str, Any]]:
    bridge = _get_bridge()
    logger.info("Executing get_link_types")
    types = _unwrap(await bridge.client.get_link_types(), "getting link types")
    return [{"id": t.get("id"), "name": t.get("name"), "inward": t.get("inward"),
             "outward": t.get("outward")} for t in types]


# --- Comment and History Tools ---

@mcp.tool("add_comment", description="Adds a comment to an issue. Light markdown is converted to Jira's rich text.")
async def add_comment(issue_key: str, comment: str) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing add_comment on {issue_key}")
    created = _unwrap(await bridge.client.add_comment(issue_key, comment), f"commenting on {issue_key}")
    return {"issue_key": issue_key, "comment_id": created.get("id"), "status": "added"}


@mcp.tool("batch_comment", description="Adds the same comment to several issues concurrently and reports which succeeded.")
async def batch_comment(issue_keys: List[str], comment: str) -> Dict[str, Any]:
    """Comments are sent concurrently. A failure on one issue does not stop the others."""
    if not issue_keys:
        raise ValueError("issue_keys must not be empty.")
    bridge = _get_bridge()
    logger.info(f"Executing batch_comment on {len(issue_keys)} issues")

    outcomes = await asyncio.gather(*(bridge.client.add_comment(key, comment) for key in issue_keys))

    succeeded = [key for key, outcome in zip(issue_keys, outcomes) if outcome.ok]
    failed = [{"issue_key": key, "error": outcome.message}
              for key, outcome in zip(issue_keys, outcomes) if not outcome.ok]
    if failed:
        logger.warning(f"batch_comment: {len(failed)} of {len(issue_keys)} comments failed")
    return {"total": len(issue_keys), "succeeded": succeeded, "failed": failed}


@mcp.tool("get_comments", description="Lists comments on an issue, newest first by default (order_by '-created' or 'created').")
async def get_comments(issue_key: str, max_results: int = 50, order_by: str = "-created") -> List[Dict[str, Any]]:
    if order_by not in ("created", "-created"):
        raise ValueError(f"Invalid order_by: {order_by}. Must be 'created' or '-created'")
    bridge = _get_bridge()
    logger.info(f"Executing get_comments for {issue_key}")
    page = _unwrap(await bridge.client.get_comments(issue_key, max_results, order_by),
                   f"getting comments for {issue_key}")
    return [
        {
            "id": c.get("id"),
            "author": _name_of(c.get("author"), "displayName"),
            "created": c.get("created"),
            "updated": c.get("updated"),
            "body": adf_to_text(c.get("body")),
        }
        for c in page.get("comments", [])
    ]


@mcp.tool("get_history", description="Gets the change history of an issue: who changed which field, from what, to what.")
async def get_history(issue_key: str, max_results: int = 50) -> List[Dict[str, Any]]:
    bridge = _get_bridge()
    logger.info(f"Executing get_history for {issue_key}")
    page = _unwrap(await bridge.client.get_history(issue_key, max_results),
                   f"getting history for {issue_key}")
    return [
        {
            "author": _name_of(entry.get("author"), "displayName"),
            "created": entry.get("created"),
            "changes": [
                {"field": item.get("field"), "from": item.get("fromString"), "to": item.get("toString")}
                for item in entry.get("items", [])
            ],
        }
        for entry in page.get("values", [])
    ]


# --- Attachment Tools ---

@mcp.tool("get_attachments", description="Lists the attachments of an issue.")
async def get_attachments(issue_key: str) -> List[Dict[str, Any]]:
    bridge = _get_bridge()
    logger.info(f"Executing get_attachments for {issue_key}")
    attachments = _unwrap(await bridge.client.get_attachments(issue_key),
                          f"getting attachments for {issue_key}")
    return [
        {
            "id": a.get("id"),
            "filename": a.get("filename"),
            "size": a.get("size"),
            "mime_type": a.get("mimeType"),
            "created": a.get("created"),
            "author": _name_of(a.get("author"), "displayName"),
            "url": a.get("content"),
        }
        for a in attachments
    ]


@mcp.tool("upload_attachment", description="Uploads a file to an issue. The content must be base64 encoded.")
async def upload_attachment(issue_key: str, file_name: str, content: str,
                            mime_type: Optional[str] = None) -> Dict[str, Any]:
    try:
        data = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Attachment content is not valid base64: {e}")
    mime_type = mime_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream"

    bridge = _get_bridge()
    logger.info(f"Executing upload_attachment {file_name} ({len(data)} bytes) to {issue_key}")
    uploaded = _unwrap(await bridge.client.add_attachment(issue_key, file_name, data, mime_type),
                       f"uploading {file_name} to {issue_key}")
    first = uploaded[0] if isinstance(uploaded, list) and uploaded else {}
    return {"issue_key": issue_key, "id": first.get("id"), "filename": first.get("filename", file_name),
            "size": first.get("size", len(data)), "status": "uploaded"}


# --- Agile Tools ---

@mcp.tool("get_boards", description="Lists agile boards, optionally only those of one project.")
async def get_boards(project_key: Optional[str] = None) -> List[Dict[str, Any]]:
    bridge = _get_bridge()
    logger.info(f"Executing get_boards (project {project_key or 'any'})")
    page = _unwrap(await bridge.client.get_boards(project_key), "getting boards")
    return [{"id": b.get("id"), "name": b.get("name"), "type": b.get("type")}
            for b in page.get("values", [])]


@mcp.tool("get_sprints", description="Lists sprints of a board. state may be 'active', 'future' or 'closed'.")
async def get_sprints(board_id: int, state: Optional[str] = None) -> List[Dict[str, Any]]:
    bridge = _get_bridge()
    logger.info(f"Executing get_sprints for board {board_id}")
    page = _unwrap(await bridge.client.get_sprints(board_id, state), f"getting sprints for board {board_id}")
    return [
        {"id": s.get("id"), "name": s.get("name"), "state": s.get("state"),
         "start_date": s.get("startDate"), "end_date": s.get("endDate"), "goal": s.get("goal")}
        for s in page.get("values", [])
    ]


@mcp.tool("create_sprint", description="Creates a sprint on a board. Dates accept '2024-12-31', 'today', 'next week', '+14d'.")
async def create_sprint(board_id: int, name: str, start_date: Optional[str] = None,
                        end_date: Optional[str] = None, goal: Optional[str] = None) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing create_sprint '{name}' on board {board_id}")
    sprint = _unwrap(await bridge.client.create_sprint(
        board_id, name, _sprint_datetime(start_date), _sprint_datetime(end_date), goal),
        f"creating sprint '{name}'")
    return {"id": sprint.get("id"), "name": sprint.get("name", name), "state": sprint.get("state"),
            "start_date": sprint.get("startDate"), "end_date": sprint.get("endDate")}


@mcp.tool("move_issue_to_sprint", description="Moves an issue into a sprint.")
async def move_issue_to_sprint(issue_key: str, sprint_id: int) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing move_issue_to_sprint {issue_key} -> sprint {sprint_id}")
    _unwrap(await bridge.client.move_issues_to_sprint(sprint_id, [issue_key]),
            f"moving {issue_key} to sprint {sprint_id}")
    return {"issue_key": issue_key, "sprint_id": sprint_id, "status": "moved"}


# --- Epic Tools ---

class SubtaskSpec(BaseModel):
    summary: str = Field(description="Subtask summary")
    description: Optional[str] = Field(default=None, description="Subtask description")
    assignee: Optional[str] = Field(default=None, description="Assignee account id")


@mcp.tool("create_epic_with_subtasks", description="Creates an epic and its subtasks in one call. Subtasks that Jira refuses under an epic are created as tasks linked to the epic instead.")
async def create_epic_with_subtasks(epic_summary: str, subtasks: List[SubtaskSpec],
                                    project: Optional[str] = None,
                                    epic_description: Optional[str] = None) -> Dict[str, Any]:
    bridge = _get_bridge()
    project_key = _project_key(bridge, project)
    logger.info(f"Executing create_epic_with_subtasks in {project_key} ({len(subtasks)} subtasks)")
    epic_type = await bridge.resolver.issue_type_name(project_key, EPIC_TYPE)
    subtask_type = await bridge.resolver.issue_type_name(project_key, SUBTASK_TYPE)

    epic = _unwrap(await bridge.client.create_issue(IssuePayload(
        project_key=project_key, issue_type=epic_type, summary=epic_summary, description=epic_description,
    )), "creating epic")
    epic_key = epic.get("key")
    if not epic_key:
        raise RuntimeError("Invalid response from Jira: missing epic key")
    logger.info(f"Epic {epic_key} created successfully.")

    created_subtasks, failed = [], []
    for subtask in subtasks:
        outcome = await bridge.client.create_issue(IssuePayload(
            project_key=project_key, issue_type=subtask_type, summary=subtask.summary,
            description=subtask.description, assignee_account_id=subtask.assignee, parent_key=epic_key,
        ))
        if outcome.ok and outcome.payload.get("key"):
            created_subtasks.append({"key": outcome.payload["key"], "summary": subtask.summary})
        else:
            error = outcome.message if not outcome.ok else "missing issue key"
            logger.error(f"Failed to create subtask '{subtask.summary}': {error}")
            failed.append((subtask, error))

    created_tasks, errors = [], []
    if failed:
        logger.info(f"{len(failed)} subtasks failed, creating tasks linked to {epic_key} instead")
        task_type = await bridge.resolver.issue_type_name(project_key, TASK_TYPE)
        fields = await bridge.resolver.resolve(project_key, task_type)
        epic_field = fields.get(FieldRole.EPIC_LINK)
        for subtask, subtask_error in failed:
            payload = IssuePayload(
                project_key=project_key, issue_type=task_type, summary=subtask.summary,
                description=subtask.description, assignee_account_id=subtask.assignee,
            )
            if epic_field:
                payload.set_custom(epic_field, epic_key)
            outcome = await bridge.client.create_issue(payload)
            if outcome.ok and outcome.payload.get("key"):
                created_tasks.append({"key": outcome.payload["key"], "summary": subtask.summary,
                                      "linked_to_epic": bool(epic_field)})
            else:
                error = outcome.message if not outcome.ok else "missing issue key"
                errors.append({"summary": subtask.summary, "subtask_error": subtask_error, "task_error": error})

    return {
        "epic": {"key": epic_key, "summary": epic_summary, "link": issue_link(bridge.client.host, epic_key)},
        "subtasks": created_subtasks,
        "tasks": created_tasks,
        "failed": errors,
    }


@mcp.tool("create_task_for_epic", description="Creates a task under an epic using the project's epic link field. Retries without the link if the field is rejected.")
async def create_task_for_epic(epic_key: str, summary: str, project: Optional[str] = None,
                               description: Optional[str] = None,
                               issue_type: Optional[str] = None) -> Dict[str, Any]:
    bridge = _get_bridge()
    project_key = _project_key(bridge, project)
    logger.info(f"Executing create_task_for_epic under {epic_key} in {project_key}")
    if not issue_type:
        issue_type = await bridge.resolver.issue_type_name(project_key, TASK_TYPE)

    payload = IssuePayload(project_key=project_key, issue_type=issue_type, summary=summary,
                           description=description)
    epic_field = await bridge.resolver.resolve_field(FieldRole.EPIC_LINK, project_key, issue_type)
    if epic_field:
        payload.set_custom(epic_field, epic_key)
    else:
        logger.warning("No epic link field found, task will be created without epic link")

    result = await bridge.client.create_issue(payload)
    linked = bool(epic_field)
    if not result.ok and epic_field and mentions_custom_field(result.message):
        logger.info(f"Retrying without epic link field {epic_field}")
        retry = await bridge.client.create_issue(replace(payload, custom_fields=[]))
        if retry.ok:
            result, linked = retry, False
        else:
            raise JiraApiError(f"{result.message}. {DIAGNOSE_HINT}", status=result.status)

    task = _unwrap(result, "creating task for epic")
    task_key = task.get("key")
    return {
        "key": task_key,
        "summary": summary,
        "epic_key": epic_key,
        "linked_to_epic": linked,
        "link": issue_link(bridge.client.host, task_key),
    }


# --- Field Tools ---

@mcp.tool("get_fields", description="Lists fields available when creating issues in a project, marking required ones and detected roles.")
async def get_fields(project: str, issue_type: Optional[str] = None) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing get_fields for {project} (issue type {issue_type or 'all'})")
    metadata = await bridge.resolver.get_field_metadata(project, issue_type)
    if not metadata:
        raise ValueError(f"No field metadata found for project {project} (issue type {issue_type or 'all'})")
    return {
        "project": project,
        "issue_type": issue_type,
        "required": [{"id": f.field_id, "name": f.name} for f in metadata if f.required],
        "custom": [{"id": f.field_id, "name": f.name, "type": f.schema.get("type")}
                   for f in metadata if f.field_id.startswith("customfield_")],
    }


@mcp.tool("diagnose_fields", description="Shows every field of a project's issue type with the role it would be mapped to, plus the configured overrides. Use when a create fails on a custom field.")
async def diagnose_fields(project: str, issue_type: str) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing diagnose_fields for {project} / {issue_type}")
    metadata = await bridge.resolver.get_field_metadata(project, issue_type)
    if not metadata:
        raise ValueError(f"No fields found for project {project} and issue type {issue_type}")

    resolved = await bridge.resolver.resolve(project, issue_type)
    roles_by_id = {field_id: role.value for role, field_id in resolved.items()}
    return {
        "project": project,
        "issue_type": issue_type,
        "fields": [
            {
                "id": f.field_id,
                "name": f.name,
                "required": f.required,
                "type": f.schema.get("type"),
                "custom_type": f.schema.get("custom"),
                "role": roles_by_id.get(f.field_id),
                "pattern_match": match_role(f.name).value if match_role(f.name) else None,
            }
            for f in metadata
        ],
        "resolved": {role.value: field_id for role, field_id in resolved.items()},
        "overrides": {role.value: field_id for role, field_id in bridge.resolver.overrides.items()},
        "auto_detect": bridge.resolver.auto_detect,
    }


@mcp.tool("detect_fields", description="Detects which custom fields hold story points, epic link, acceptance criteria and similar roles for a project.")
async def detect_fields(project: str, issue_type: Optional[str] = None) -> Dict[str, str]:
    bridge = _get_bridge()
    logger.info(f"Executing detect_fields for {project} (issue type {issue_type or 'all'})")
    detected = await bridge.resolver.detect_fields(project, issue_type)
    return {role.value: field_id for role, field_id in detected.items()}


@mcp.tool("clear_field_cache", description="Forgets detected fields, for one project or all, so the next call detects them again.")
async def clear_field_cache(project: Optional[str] = None) -> Dict[str, Any]:
    bridge = _get_bridge()
    logger.info(f"Executing clear_field_cache (project {project or 'all'})")
    bridge.resolver.clear_cache(project)
    return {"status": "cleared", "project": project}


# --- Resources ---

@mcp.resource("jira://projects")
async def projects_resource() -> str:
    """Projects visible to the configured account"""
    bridge = _get_bridge()
    projects = _unwrap(await bridge.client.get_projects(), "listing projects")
    return json.dumps([
        {"key": p.get("key"), "name": p.get("name"), "type": p.get("projectTypeKey")}
        for p in projects
    ], indent=2)


@mcp.resource("jira://project/{project_key}")
async def project_resource(project_key: str) -> str:
    """Project details with its issue types"""
    bridge = _get_bridge()
    project = _unwrap(await bridge.client.get_project(project_key), f"getting project {project_key}")
    return json.dumps({
        "key": project.get("key"),
        "name": project.get("name"),
        "description": project.get("description"),
        "lead": _name_of(project.get("lead"), "displayName"),
        "issue_types": [it.get("name") for it in project.get("issueTypes", [])],
    }, indent=2)


@mcp.resource("jira://issue/{issue_key}")
async def issue_resource(issue_key: str) -> str:
    """Issue details"""
    bridge = _get_bridge()
    issue = _unwrap(await bridge.client.get_issue(issue_key), f"getting {issue_key}")
    return json.dumps(format_issue(issue, bridge.client.host), indent=2)


@mcp.resource("jira://myself")
async def myself_resource() -> str:
    """The account the bridge authenticates as"""
    bridge = _get_bridge()
    user = _unwrap(await bridge.client.get_current_user(), "getting current user")
    return json.dumps({
        "account_id": user.get("accountId"),
        "display_name": user.get("displayName"),
        "email": user.get("emailAddress"),
        "time_zone": user.get("timeZone"),
    }, indent=2)


# --- Prompts ---

@mcp.prompt("standup_report")
def standup_report(assignee: str, days: int = 1) -> str:
    """Generate a standup report for a team member"""
    since = (date.today() - timedelta(days=days)).isoformat()
    return (
        f"Generate a standup report for {assignee} based on their Jira activity.\n"
        f"Use the search_issues tool to find:\n"
        f"1. Issues assigned to them that were updated since {since}\n"
        f"2. Issues they created recently\n"
        f"3. Issues they transitioned\n\n"
        f"Format the report with:\n"
        f"- Yesterday: What was completed\n"
        f"- Today: What's in progress\n"
        f"- Blockers: Any blocked issues"
    )


@mcp.prompt("sprint_planning")
def sprint_planning(project: str, sprint: Optional[str] = None) -> str:
    """Help with sprint planning activities"""
    target = f" (sprint {sprint})" if sprint else ""
    return (
        f"Help with sprint planning for project {project}{target}.\n"
        f"1. Search for unassigned stories in the backlog\n"
        f"2. Find stories without story points (use detect_fields to find the field)\n"
        f"3. Identify stories missing acceptance criteria\n"
        f"4. List high-priority items ready for the sprint\n\n"
        f"Recommend which stories are ready to pull into the sprint, which need more "
        f"refinement, and how the story points fit the team's capacity."
    )


@mcp.prompt("bug_triage")
def bug_triage(project: str, priority: Optional[str] = None) -> str:
    """Help triage and prioritize bugs"""
    priority_filter = f' AND priority = "{priority}"' if priority else ""
    return (
        f"Perform bug triage for project {project}:\n"
        f'1. Search for open bugs using: project = "{project}" AND issuetype = "Bug" '
        f'AND status != "Done"{priority_filter}\n'
        f"2. Group bugs by priority, component, age and assignment status\n\n"
        f"Recommend which bugs need immediate attention, which can be deferred, which might "
        f"be duplicates, and who could take them based on components."
    )


@mcp.prompt("release_notes")
def release_notes(project: str, version: str, start_date: Optional[str] = None) -> str:
    """Generate release notes from completed issues"""
    date_filter = f' AND resolved >= "{parse_date(start_date)}"' if start_date else ""
    return (
        f"Generate release notes for {project} version {version}:\n"
        f'1. Search for completed issues: project = "{project}" AND fixVersion = "{version}" '
        f'AND status = "Done"{date_filter}\n'
        f"2. Categorize them as New Features (stories), Bug Fixes (bugs), Improvements (tasks) "
        f"and Breaking Changes (check labels)\n\n"
        f"Format as markdown with a version header, release date, summary and a detailed list "
        f"per category."
    )


@mcp.prompt("epic_status")
def epic_status(epic_key: str) -> str:
    """Summarize progress of an epic"""
    return (
        f"Report the status of epic {epic_key}:\n"
        f"1. Use get_issue to read the epic\n"
        f'2. Search its children with: parent = "{epic_key}"\n'
        f"3. Count children per status and sum story points done vs. remaining\n\n"
        f"Summarize progress, list blocked or overdue children, and flag risks to the epic's due date."
    )


def configure_logging(settings: Settings) -> None:
    """Applies LOG_LEVEL and LOG_FILE on top of the module-level setup."""
    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL)
    if settings.LOG_FILE:
        file_handler = logging.FileHandler(settings.LOG_FILE)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root.addHandler(file_handler)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Jira MCP Bridge")
    parser.add_argument("--sse", action="store_true",
                        help="Use SSE transport mode (default is stdio)")
    args = parser.parse_args(argv)

    global _bridge
    settings = Settings()
    configure_logging(settings)
    _bridge = JiraBridge.from_settings(settings)

    transport = "sse" if args.sse else settings.TRANSPORT_MODE
    logger.info(f"Starting Jira MCP Bridge for {settings.JIRA_HOST} ({transport})")
    mcp.run(transport=transport)


if __name__ == "__main__":
    main()
