# names.py
"""Canonical names for localized Jira issue types and link types."""
from typing import Dict, List, Mapping, Sequence

ISSUE_TYPE_NAMES: Dict[str, List[str]] = {
    "Epic": ["Epic", "Epik", "Epika"],
    "Story": ["Story", "User Story", "Příběh", "Uživatelský příběh"],
    "Task": ["Task", "Úkol"],
    "Bug": ["Bug", "Chyba", "Defekt"],
    "Subtask": ["Subtask", "Sub-task", "Dílčí úkol", "Podúkol"],
    "Test": ["Test", "Testovací případ"],
}

LINK_TYPE_NAMES: Dict[str, List[str]] = {
    "Blocks": ["Blocks", "Blokuje", "is blocked by", "blocks"],
    "Relates": ["Relates", "Relates to", "Souvisí", "Souvisí s"],
    "Duplicate": ["Duplicate", "Duplicates", "is duplicated by", "Duplikát", "Duplikuje"],
    "Cloners": ["Cloners", "Clones", "is cloned by", "Klonuje"],
    "Test": ["Test", "Test Case Linking", "tests", "is tested by"],
}


def _index(table: Mapping[str, Sequence[str]]) -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for canonical, synonyms in table.items():
        lookup.setdefault(canonical.lower(), canonical)
        for synonym in synonyms:
            lookup.setdefault(synonym.lower(), canonical)
    return lookup


_ISSUE_TYPE_LOOKUP = _index(ISSUE_TYPE_NAMES)
_LINK_TYPE_LOOKUP = _index(LINK_TYPE_NAMES)


def normalize(name: str, table: Mapping[str, Sequence[str]] = ISSUE_TYPE_NAMES) -> str:
    """
    Returns the canonical form of a localized name, or the input unchanged.

    Lookup is case-insensitive. Unknown names are not an error: Jira is the
    authority on valid names, this only recognizes synonyms for branching.
    """
    if not name:
        return name
    if table is ISSUE_TYPE_NAMES:
        lookup = _ISSUE_TYPE_LOOKUP
    elif table is LINK_TYPE_NAMES:
        lookup = _LINK_TYPE_LOOKUP
    else:
        lookup = _index(table)
    return lookup.get(name.strip().lower(), name)


def normalize_issue_type(name: str) -> str:
    return normalize(name, ISSUE_TYPE_NAMES)


def normalize_link_type(name: str) -> str:
    return normalize(name, LINK_TYPE_NAMES)


def same_issue_type(left: str, right: str) -> bool:
    """True when two issue type names are equal ignoring case or map to the same canonical type."""
    if not left or not right:
        return False
    if left.lower() == right.lower():
        return True
    return normalize_issue_type(left) == normalize_issue_type(right)
