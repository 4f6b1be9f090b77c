# jira_client.py
import logging
from typing import Any, Dict, List, Optional, Union

from jira_bridge.adf import text_to_adf
from jira_bridge.errors import is_epic_link_system_type, is_link_type_not_found
from jira_bridge.names import normalize_link_type
from jira_bridge.payload import IssuePayload, as_body
from jira_bridge.transport import CallOutcome, Failure, Success, Transport

# Ensure logger is named correctly for hierarchy
logger = logging.getLogger(__name__)

CORE = "/rest/api/3"
AGILE = "/rest/agile/1.0"

EPIC_LINK_GUIDANCE = (
    "Epic relations cannot be created as issue links: Jira manages them through a "
    "system link type. Attach the child to the epic instead: create_task_for_epic, or "
    "update_issue with parent or epic_link set to the epic key.")


class JiraClient:
    """
    Operations against the Jira Cloud REST API, routed to the core or agile family.

    Every method returns the Transport's CallOutcome. Failures are returned,
    never raised, so callers decide whether to surface or recover.
    """

    def __init__(self, transport: Transport):
        self.transport = transport

    @property
    def host(self) -> str:
        return self.transport.host

    async def _core(self, method: str, path: str, body: Any = None, **kwargs) -> CallOutcome:
        return await self.transport.execute(method, f"{CORE}{path}", body, **kwargs)

    async def _agile(self, method: str, path: str, body: Any = None, **kwargs) -> CallOutcome:
        return await self.transport.execute(method, f"{AGILE}{path}", body, **kwargs)

    # --- Issues ---

    async def create_issue(self, payload: Union[IssuePayload, Dict[str, Any]]) -> CallOutcome:
        body = as_body(payload)
        fields = body.get("fields", {})
        logger.info(
            f"Creating issue in project {fields.get('project', {}).get('key')} "
            f"(type {fields.get('issuetype', {}).get('name')})")
        result = await self._core("POST", "/issue", body)
        if result.ok:
            logger.info(f"Issue created successfully: {result.payload.get('key')}")
        return result

    async def update_issue(self, issue_key: str, payload: Union[IssuePayload, Dict[str, Any]]) -> CallOutcome:
        body = as_body(payload)
        logger.info(f"Updating issue {issue_key}, fields: {list(body.get('fields', {}).keys())}")
        return await self._core("PUT", f"/issue/{issue_key}", body)

    async def get_issue(self, issue_key: str, expand: Optional[List[str]] = None) -> CallOutcome:
        logger.info(f"Getting issue {issue_key}")
        params = {"expand": ",".join(expand)} if expand else None
        return await self._core("GET", f"/issue/{issue_key}", params=params)

    async def search_issues(self, jql: str, max_results: int = 50) -> CallOutcome:
        logger.info(f"Searching issues: {jql} (max {max_results})")
        params = {"jql": jql, "maxResults": max_results, "fields": "*navigable"}
        return await self._core("GET", "/search/jql", params=params)

    # --- Links ---

    async def link_issues(self, inward_issue: str, outward_issue: str, link_type: str) -> CallOutcome:
        logger.info(f"Linking {inward_issue} -> {outward_issue} ({link_type})")
        body = {
            "type": {"name": link_type},
            "inwardIssue": {"key": inward_issue},
            "outwardIssue": {"key": outward_issue},
        }
        return await self._core("POST", "/issueLink", body)

    async def get_link_types(self) -> CallOutcome:
        """Returns Success with a list of link type dicts (name, inward, outward)."""
        result = await self._core("GET", "/issueLinkType")
        if not result.ok:
            return result
        payload = result.payload
        if isinstance(payload, dict):
            payload = payload.get("issueLinkTypes", [])
        return Success(payload if isinstance(payload, list) else [])

    async def link_issues_resolving_type(self, inward_issue: str, outward_issue: str,
                                         link_type: str) -> CallOutcome:
        """
        Links two issues, recovering from an unknown or localized link type name.

        The literal name is tried first. If Jira reports the type as unknown, the
        available types are matched on name, inward or outward phrase (and on the
        canonical English name) and the link is retried once with the match.
        """
        result = await self.link_issues(inward_issue, outward_issue, link_type)
        if result.ok:
            return result

        if is_epic_link_system_type(result.message, link_type, result.status):
            logger.warning(f"Refusing epic link {inward_issue} -> {outward_issue}: system link type")
            return Failure(f"{EPIC_LINK_GUIDANCE} ({result.message})",
                           status=result.status, retryable=False)

        if not is_link_type_not_found(result.message):
            return result

        types_result = await self.get_link_types()
        if not types_result.ok:
            return result
        available = types_result.payload

        match = find_link_type(available, link_type)
        if match is None:
            names = ", ".join(t.get("name", "") for t in available)
            return Failure(
                f"Link type '{link_type}' not found. Available link types: {names}",
                status=result.status, retryable=False)

        logger.info(f"Retrying link with resolved type '{match['name']}' (requested '{link_type}')")
        return await self.link_issues(inward_issue, outward_issue, match["name"])

    # --- Workflow ---

    async def get_transitions(self, issue_key: str) -> CallOutcome:
        logger.info(f"Getting transitions for {issue_key}")
        result = await self._core("GET", f"/issue/{issue_key}/transitions")
        if result.ok:
            logger.debug(
                f"Available transitions: {[(t.get('id'), t.get('name')) for t in result.payload.get('transitions', [])]}")
        return result

    async def transition_issue(self, issue_key: str, transition_id: str) -> CallOutcome:
        logger.info(f"Transitioning {issue_key} with transition {transition_id}")
        return await self._core("POST", f"/issue/{issue_key}/transitions",
                                {"transition": {"id": str(transition_id)}})

    # --- Comments and history ---

    async def add_comment(self, issue_key: str, text: str) -> CallOutcome:
        logger.info(f"Adding comment to {issue_key} ({len(text)} chars)")
        return await self._core("POST", f"/issue/{issue_key}/comment", {"body": text_to_adf(text)})

    async def get_comments(self, issue_key: str, max_results: int = 50,
                           order_by: str = "-created") -> CallOutcome:
        logger.info(f"Getting comments for {issue_key}")
        params = {"maxResults": max_results, "orderBy": order_by}
        return await self._core("GET", f"/issue/{issue_key}/comment", params=params)

    async def get_history(self, issue_key: str, max_results: int = 100) -> CallOutcome:
        logger.info(f"Getting change history for {issue_key}")
        return await self._core("GET", f"/issue/{issue_key}/changelog",
                                params={"maxResults": max_results})

    # --- Attachments ---

    async def get_attachments(self, issue_key: str) -> CallOutcome:
        """Returns Success with the issue's attachment list."""
        logger.info(f"Getting attachments for {issue_key}")
        result = await self._core("GET", f"/issue/{issue_key}", params={"fields": "attachment"})
        if not result.ok:
            return result
        return Success(result.payload.get("fields", {}).get("attachment") or [])

    async def add_attachment(self, issue_key: str, file_name: str, content: bytes,
                             mime_type: str = "application/octet-stream") -> CallOutcome:
        logger.info(f"Adding attachment {file_name} to {issue_key} ({len(content)} bytes)")
        result = await self._core(
            "POST", f"/issue/{issue_key}/attachments",
            files={"file": (file_name, content, mime_type)},
            headers={"X-Atlassian-Token": "no-check"},
        )
        if result.ok:
            logger.info(f"Attachment {file_name} uploaded to {issue_key}")
        return result

    # --- Metadata ---

    async def get_create_meta(self, project_key: str) -> CallOutcome:
        logger.info(f"Getting create metadata for project {project_key}")
        params = {"projectKeys": project_key, "expand": "projects.issuetypes.fields"}
        return await self._core("GET", "/issue/createmeta", params=params)

    async def get_projects(self) -> CallOutcome:
        logger.info("Getting projects")
        return await self._core("GET", "/project")

    async def get_project(self, project_key: str) -> CallOutcome:
        logger.info(f"Getting project {project_key}")
        return await self._core("GET", f"/project/{project_key}")

    async def get_issue_types(self, project_key: str) -> CallOutcome:
        """Issue types with their workflow statuses for a project."""
        logger.info(f"Getting issue types for project {project_key}")
        return await self._core("GET", f"/project/{project_key}/statuses")

    async def get_current_user(self) -> CallOutcome:
        logger.info("Getting current user")
        return await self._core("GET", "/myself")

    async def test_connection(self) -> bool:
        result = await self.get_current_user()
        if result.ok:
            logger.info(f"Connection test successful as {result.payload.get('displayName')}")
            return True
        logger.error(f"Connection test failed: {result.message}")
        return False

    # --- Agile ---

    async def get_boards(self, project_key: Optional[str] = None) -> CallOutcome:
        logger.info(f"Getting boards{f' for project {project_key}' if project_key else ''}")
        params = {"projectKeyOrId": project_key} if project_key else None
        return await self._agile("GET", "/board", params=params)

    async def get_sprints(self, board_id: int, state: Optional[str] = None) -> CallOutcome:
        logger.info(f"Getting sprints for board {board_id}")
        params = {"state": state} if state else None
        return await self._agile("GET", f"/board/{board_id}/sprint", params=params)

    async def create_sprint(self, board_id: int, name: str, start_date: Optional[str] = None,
                            end_date: Optional[str] = None, goal: Optional[str] = None) -> CallOutcome:
        logger.info(f"Creating sprint '{name}' on board {board_id}")
        body: Dict[str, Any] = {"name": name, "originBoardId": board_id}
        if start_date:
            body["startDate"] = start_date
        if end_date:
            body["endDate"] = end_date
        if goal:
            body["goal"] = goal
        return await self._agile("POST", "/sprint", body)

    async def move_issues_to_sprint(self, sprint_id: int, issue_keys: List[str]) -> CallOutcome:
        logger.info(f"Moving {issue_keys} to sprint {sprint_id}")
        # Moving an issue into the sprint it is already in is a no-op
        return await self._agile("POST", f"/sprint/{sprint_id}/issue",
                                 {"issues": list(issue_keys)}, idempotent=True)


def find_link_type(available: List[Dict[str, Any]], requested: str) -> Optional[Dict[str, Any]]:
    """Case-insensitive match on name, inward or outward phrase, then on canonical name."""
    wanted = requested.strip().lower()
    for link_type in available:
        candidates = (link_type.get("name"), link_type.get("inward"), link_type.get("outward"))
        if any(c and c.lower() == wanted for c in candidates):
            return link_type

    canonical = normalize_link_type(requested)
    for link_type in available:
        if normalize_link_type(link_type.get("name", "")) == canonical:
            return link_type
        if any(normalize_link_type(link_type.get(k) or "") == canonical for k in ("inward", "outward")):
            return link_type
    return None
