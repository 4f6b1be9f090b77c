# field_resolver.py
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

from jira_bridge.jira_client import JiraClient
from jira_bridge.names import same_issue_type

logger = logging.getLogger(__name__)


class FieldRole(str, Enum):
    """Semantic roles a project's custom fields are mapped onto. Declaration order is matching order."""
    STORY_POINTS = "storyPoints"
    EPIC_LINK = "epicLink"
    ACCEPTANCE_CRITERIA = "acceptanceCriteria"
    TEAM = "team"
    START_DATE = "startDate"
    DUE_DATE = "dueDate"
    ORIGINAL_ESTIMATE = "originalEstimate"
    REMAINING_ESTIMATE = "remainingEstimate"


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# English and Czech display names
FIELD_PATTERNS: Dict[FieldRole, List[Pattern]] = {
    FieldRole.STORY_POINTS: _compile(
        r"story\s*points?", r"story\s*point", r"estimation", r"bodové\s*ohodnocení", r"body"),
    FieldRole.EPIC_LINK: _compile(
        r"epic\s*link", r"parent\s*epic", r"epic\s*name", r"epic"),
    FieldRole.ACCEPTANCE_CRITERIA: _compile(
        r"acceptance\s*criteria", r"akceptační\s*kritéria", r"definition\s*of\s*done"),
    FieldRole.TEAM: _compile(r"team", r"tým"),
    FieldRole.START_DATE: _compile(r"start\s*date", r"datum\s*zahájení", r"začátek"),
    FieldRole.DUE_DATE: _compile(r"due\s*date", r"datum\s*dokončení", r"termín", r"deadline"),
    FieldRole.ORIGINAL_ESTIMATE: _compile(
        r"original\s*estimate", r"původní\s*odhad", r"initial\s*estimate"),
    FieldRole.REMAINING_ESTIMATE: _compile(
        r"remaining\s*estimate", r"zbývající\s*odhad", r"time\s*remaining"),
}

Scope = Tuple[str, str]


@dataclass(frozen=True)
class FieldMetadata:
    field_id: str
    name: str
    required: bool = False
    schema: Dict[str, Any] = field(default_factory=dict)


def match_role(field_name: str, exclude=()) -> Optional[FieldRole]:
    """First role (in declaration order, skipping `exclude`) with a pattern matching the name."""
    for role, patterns in FIELD_PATTERNS.items():
        if role in exclude:
            continue
        if any(p.search(field_name) for p in patterns):
            return role
    return None


def _scope(project_key: str, issue_type: Optional[str]) -> Scope:
    return (project_key, issue_type or "all")


class FieldResolver:
    """
    Maps a project's custom fields onto FieldRoles by display name.

    Results are cached per (project, issue type) for the life of the process.
    Detection is fail-open: if metadata cannot be read, an empty map is
    returned and nothing is cached, so the next call tries again.
    """

    def __init__(self, client: JiraClient, overrides: Optional[Mapping[FieldRole, str]] = None,
                 auto_detect: bool = True):
        self.client = client
        self.overrides: Dict[FieldRole, str] = dict(overrides or {})
        self.auto_detect = auto_detect
        self._cache: Dict[Scope, Dict[FieldRole, str]] = {}
        self._type_names: Dict[Scope, str] = {}

    async def _issue_types(self, project_key: str, issue_type: Optional[str]) -> List[Dict[str, Any]]:
        result = await self.client.get_create_meta(project_key)
        if not result.ok:
            logger.error(f"Failed to get field metadata for {project_key}: {result.message}")
            return []
        if not isinstance(result.payload, dict):
            logger.error(f"Unexpected create metadata for {project_key}: {type(result.payload).__name__}")
            return []

        projects = result.payload.get("projects") or []
        if not projects:
            logger.warning(f"Project not found in create metadata: {project_key}")
            return []

        issue_types = projects[0].get("issuetypes") or []
        if issue_type:
            issue_types = [it for it in issue_types if same_issue_type(it.get("name", ""), issue_type)]
        if not issue_types:
            logger.warning(f"No issue types found for {project_key} (issue type {issue_type or 'all'})")
        return issue_types

    @staticmethod
    def _union_fields(issue_types: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        merged: Dict[str, Dict[str, Any]] = {}
        for it in issue_types:
            for field_id, definition in (it.get("fields") or {}).items():
                merged.setdefault(field_id, definition)
        return merged

    async def detect_fields(self, project_key: str, issue_type: Optional[str] = None) -> Dict[FieldRole, str]:
        scope = _scope(project_key, issue_type)
        if scope in self._cache:
            logger.debug(f"Returning cached fields for {scope}")
            return dict(self._cache[scope])

        logger.info(f"Detecting fields for project {project_key} (issue type {issue_type or 'all'})")
        try:
            issue_types = await self._issue_types(project_key, issue_type)
            if not issue_types:
                return {}

            detected: Dict[FieldRole, str] = {}
            for field_id, definition in self._union_fields(issue_types).items():
                name = definition.get("name") or ""
                role = match_role(name, exclude=detected)
                if role is not None:
                    detected[role] = field_id
                    logger.info(f"Detected field {role.value}: {field_id} ({name})")
        except Exception as e:
            logger.error(f"Error detecting fields for {project_key}: {e}", exc_info=True)
            return {}

        self._cache[scope] = detected
        logger.info(f"Field detection complete for {project_key}: {len(detected)} fields")
        return dict(detected)

    async def resolve(self, project_key: str, issue_type: Optional[str] = None) -> Dict[FieldRole, str]:
        """Detected fields overlaid with the explicit overrides, which take precedence."""
        fields: Dict[FieldRole, str] = {}
        if self.auto_detect:
            fields.update(await self.detect_fields(project_key, issue_type))
        fields.update(self.overrides)
        return fields

    async def resolve_field(self, role: FieldRole, project_key: str,
                            issue_type: Optional[str] = None) -> Optional[str]:
        return (await self.resolve(project_key, issue_type)).get(role)

    def clear_cache(self, project_key: Optional[str] = None) -> None:
        if project_key is None:
            self._cache.clear()
            self._type_names.clear()
            logger.info("Cleared field cache")
            return
        for scope in [s for s in self._cache if s[0] == project_key]:
            del self._cache[scope]
        for scope in [s for s in self._type_names if s[0] == project_key]:
            del self._type_names[scope]
        logger.info(f"Cleared field cache for project {project_key}")

    def get_cached_fields(self, project_key: str, issue_type: Optional[str] = None) -> Optional[Dict[FieldRole, str]]:
        cached = self._cache.get(_scope(project_key, issue_type))
        return dict(cached) if cached is not None else None

    async def get_field_metadata(self, project_key: str, issue_type: Optional[str] = None) -> List[FieldMetadata]:
        """All field definitions for the project (or issue type), for diagnosis."""
        issue_types = await self._issue_types(project_key, issue_type)
        return [
            FieldMetadata(
                field_id=field_id,
                name=definition.get("name") or "",
                required=bool(definition.get("required", False)),
                schema=definition.get("schema") or {},
            )
            for field_id, definition in self._union_fields(issue_types).items()
        ]

    async def issue_type_name(self, project_key: str, canonical: str) -> str:
        """
        The project's own name for a canonical issue type ("Task" may be "Úkol").

        Falls back to the canonical name when the project's types cannot be read
        or none of them matches.
        """
        scope = (project_key, canonical)
        if scope in self._type_names:
            return self._type_names[scope]

        try:
            issue_types = await self._issue_types(project_key, canonical)
        except Exception as e:
            logger.error(f"Error reading issue types for {project_key}: {e}", exc_info=True)
            return canonical
        if not issue_types or not issue_types[0].get("name"):
            return canonical

        name = issue_types[0]["name"]
        logger.info(f"Issue type {canonical} in {project_key} is named '{name}'")
        self._type_names[scope] = name
        return name
