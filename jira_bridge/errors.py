# errors.py
from dataclasses import dataclass
from typing import Any, Optional

# Longest slice of a non-JSON error body kept in a failure message
MAX_ERROR_TEXT = 200


class JiraError(Exception):
    """Base exception for the Jira bridge."""


class JiraApiError(JiraError):
    """
    A failed call against the Jira REST API.

    Raised inside a single transport attempt so the retry loop can decide
    whether to try again, and raised by the tool layer when a call outcome
    is a failure.
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.status = status
        self.retryable = retryable


@dataclass(frozen=True)
class Classification:
    retryable: bool
    message: str


def is_retryable_status(status: Optional[int]) -> bool:
    """4xx means the request itself is wrong. Anything else (5xx, no status) may pass on retry."""
    if status is None:
        return True
    return not 400 <= status <= 499


def extract_error_message(status: Optional[int], parsed_body: Any = None,
                          reason: Optional[str] = None, raw_text: Optional[str] = None) -> str:
    """
    Pulls the most useful message out of a Jira error body.

    Priority: errorMessages list, errors map (as "field: message" pairs),
    a single message field, then the HTTP status line.
    """
    status_line = f"HTTP {status}: {reason or ''}".rstrip() if status is not None else "Network error"

    if isinstance(parsed_body, dict):
        error_messages = parsed_body.get("errorMessages")
        if error_messages:
            return ", ".join(str(m) for m in error_messages)

        errors = parsed_body.get("errors")
        if isinstance(errors, dict) and errors:
            return ", ".join(f"{field}: {message}" for field, message in errors.items())

        if parsed_body.get("message"):
            return str(parsed_body["message"])

    if raw_text:
        return f"{status_line} - {raw_text[:MAX_ERROR_TEXT]}"

    return status_line


def classify(status_code: Optional[int], parsed_body: Any = None,
             reason: Optional[str] = None, raw_text: Optional[str] = None) -> Classification:
    """Decides whether a non-2xx response could succeed on retry and builds its message."""
    return Classification(
        retryable=is_retryable_status(status_code),
        message=extract_error_message(status_code, parsed_body, reason, raw_text),
    )


# --- Message heuristics ---
# Jira reports these conditions only as localized free text. Matching is best
# effort (English and Czech) and kept here so it can be replaced by a
# structured error code check.

LINK_TYPE_NOT_FOUND_MARKERS = (
    "link type",
    "typ odkazu",
)

EPIC_LINK_SYSTEM_MARKERS = (
    "system link type",
    "systémového propojení",
)


def is_link_type_not_found(message: Optional[str]) -> bool:
    """True when an issue-link failure looks like an unknown link type."""
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in LINK_TYPE_NOT_FOUND_MARKERS)


def is_epic_link_system_type(message: Optional[str], link_type: Optional[str] = None,
                             status: Optional[int] = None) -> bool:
    """
    True when Jira refused a link because epic relations use a system link type.

    An epic-named link type only counts when Jira rejected the request itself
    (a 4xx other than 404); a missing issue is reported as it is.
    """
    rejected = status is not None and 400 <= status < 500 and status != 404
    if rejected and link_type and "epic" in link_type.lower():
        return True
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in EPIC_LINK_SYSTEM_MARKERS)


def mentions_custom_field(message: Optional[str]) -> bool:
    """A client failure naming a custom field usually means a schema mismatch."""
    return bool(message) and "customfield_" in message
