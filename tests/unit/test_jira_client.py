import pytest
import httpx

from jira_bridge.jira_client import EPIC_LINK_GUIDANCE, find_link_type
from jira_bridge.payload import IssuePayload
from jira_bridge.transport import Success
from conftest import json_response

LINK_TYPES = {
    "issueLinkTypes": [
        {"id": "1", "name": "Blocks", "inward": "is blocked by", "outward": "blocks"},
        {"id": "2", "name": "Relates", "inward": "relates to", "outward": "relates to"},
        {"id": "3", "name": "Test", "inward": "is tested by", "outward": "tests"},
    ]
}
NOT_FOUND = {"errorMessages": ["No issue link type with name 'Blokuje' found."]}


class TestRouting:
    """Tests that operations reach the right API family and endpoint."""

    @pytest.mark.asyncio
    async def test_create_issue_posts_to_core(self, make_client):
        client = make_client(json_response(201, {"id": "10001", "key": "PROJ-1"}))

        result = await client.create_issue(IssuePayload(project_key="PROJ", summary="s", issue_type="Task"))

        request = client.handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/rest/api/3/issue"
        assert client.handler.json_body()["fields"]["project"] == {"key": "PROJ"}
        assert result.payload["key"] == "PROJ-1"

    @pytest.mark.asyncio
    async def test_update_issue_accepts_raw_dict(self, make_client):
        client = make_client(httpx.Response(204))

        result = await client.update_issue("PROJ-1", {"fields": {"customfield_10016": 3}})

        assert result == Success({})
        assert client.handler.requests[0].method == "PUT"
        assert client.handler.json_body() == {"fields": {"customfield_10016": 3}}

    @pytest.mark.asyncio
    async def test_get_issue_with_expand(self, make_client):
        client = make_client(json_response(200, {"key": "PROJ-1"}))

        await client.get_issue("PROJ-1", expand=["changelog", "renderedFields"])

        request = client.handler.requests[0]
        assert request.url.path == "/rest/api/3/issue/PROJ-1"
        assert request.url.params["expand"] == "changelog,renderedFields"

    @pytest.mark.asyncio
    async def test_search_issues(self, make_client):
        client = make_client(json_response(200, {"issues": []}))

        await client.search_issues('project = "PROJ"', max_results=10)

        request = client.handler.requests[0]
        assert request.url.path == "/rest/api/3/search/jql"
        assert request.url.params["jql"] == 'project = "PROJ"'
        assert request.url.params["maxResults"] == "10"

    @pytest.mark.asyncio
    async def test_add_comment_sends_adf(self, make_client):
        client = make_client(json_response(201, {"id": "100"}))

        await client.add_comment("PROJ-1", "Looks good")

        body = client.handler.json_body()["body"]
        assert body["type"] == "doc"
        assert body["content"][0]["content"][0]["text"] == "Looks good"

    @pytest.mark.asyncio
    async def test_transition_issue(self, make_client):
        client = make_client(httpx.Response(204))

        await client.transition_issue("PROJ-1", "31")

        assert client.handler.requests[0].url.path == "/rest/api/3/issue/PROJ-1/transitions"
        assert client.handler.json_body() == {"transition": {"id": "31"}}

    @pytest.mark.asyncio
    async def test_get_create_meta(self, make_client):
        client = make_client(json_response(200, {"projects": []}))

        await client.get_create_meta("PROJ")

        request = client.handler.requests[0]
        assert request.url.path == "/rest/api/3/issue/createmeta"
        assert request.url.params["projectKeys"] == "PROJ"
        assert request.url.params["expand"] == "projects.issuetypes.fields"

    @pytest.mark.asyncio
    async def test_get_boards_uses_agile_family(self, make_client):
        client = make_client(json_response(200, {"values": [{"id": 1}]}))

        await client.get_boards("PROJ")

        request = client.handler.requests[0]
        assert request.url.path == "/rest/agile/1.0/board"
        assert request.url.params["projectKeyOrId"] == "PROJ"

    @pytest.mark.asyncio
    async def test_create_sprint(self, make_client):
        client = make_client(json_response(201, {"id": 7, "name": "Sprint 7"}))

        await client.create_sprint(3, "Sprint 7", "2024-02-01T00:00:00.000Z", None)

        assert client.handler.requests[0].url.path == "/rest/agile/1.0/sprint"
        assert client.handler.json_body() == {
            "name": "Sprint 7", "originBoardId": 3, "startDate": "2024-02-01T00:00:00.000Z"}

    @pytest.mark.asyncio
    async def test_move_issues_to_sprint_is_retried(self, make_client):
        client = make_client(json_response(503, {}), httpx.Response(204))

        result = await client.move_issues_to_sprint(7, ["PROJ-1", "PROJ-2"])

        assert result.ok
        assert len(client.handler.requests) == 2
        assert client.handler.requests[0].url.path == "/rest/agile/1.0/sprint/7/issue"
        assert client.handler.json_body() == {"issues": ["PROJ-1", "PROJ-2"]}

    @pytest.mark.asyncio
    async def test_connection(self, make_client):
        client = make_client(json_response(200, {"displayName": "Jane"}), json_response(401, {}))

        assert await client.test_connection() is True
        assert await client.test_connection() is False


class TestPayloadShapes:
    """Tests for endpoints whose payload is reshaped by the client."""

    @pytest.mark.asyncio
    async def test_link_types_normalized_to_list(self, make_client):
        client = make_client(json_response(200, LINK_TYPES))

        result = await client.get_link_types()

        assert [t["name"] for t in result.payload] == ["Blocks", "Relates", "Test"]

    @pytest.mark.asyncio
    async def test_attachments_extracted(self, make_client):
        attachment = {"id": "5", "filename": "log.txt"}
        client = make_client(json_response(200, {"fields": {"attachment": [attachment]}}))

        result = await client.get_attachments("PROJ-1")

        assert result.payload == [attachment]
        assert client.handler.requests[0].url.params["fields"] == "attachment"

    @pytest.mark.asyncio
    async def test_attachments_missing_field(self, make_client):
        client = make_client(json_response(200, {"fields": {}}))

        result = await client.get_attachments("PROJ-1")

        assert result.payload == []

    @pytest.mark.asyncio
    async def test_add_attachment_is_multipart(self, make_client):
        client = make_client(json_response(200, [{"id": "9", "filename": "a.txt"}]))

        result = await client.add_attachment("PROJ-1", "a.txt", b"hello", "text/plain")

        request = client.handler.requests[0]
        assert request.url.path == "/rest/api/3/issue/PROJ-1/attachments"
        assert request.headers["X-Atlassian-Token"] == "no-check"
        assert request.headers["Content-Type"].startswith("multipart/form-data; boundary=")
        assert request.headers["Authorization"].startswith("Basic ")
        assert b'filename="a.txt"' in request.read()
        assert result.payload[0]["id"] == "9"

    @pytest.mark.asyncio
    async def test_add_attachment_not_retried(self, make_client):
        client = make_client(json_response(500, {"message": "boom"}))

        result = await client.add_attachment("PROJ-1", "a.txt", b"hello")

        assert not result.ok
        assert len(client.handler.requests) == 1


class TestLinkFallback:
    """Tests for linking with an unknown or localized link type name."""

    @pytest.mark.asyncio
    async def test_literal_type_succeeds(self, make_client):
        client = make_client(httpx.Response(201))

        result = await client.link_issues_resolving_type("PROJ-1", "PROJ-2", "Blocks")

        assert result.ok
        assert len(client.handler.requests) == 1
        assert client.handler.json_body() == {
            "type": {"name": "Blocks"},
            "inwardIssue": {"key": "PROJ-1"},
            "outwardIssue": {"key": "PROJ-2"},
        }

    @pytest.mark.asyncio
    async def test_localized_name_resolved_and_retried(self, make_client):
        client = make_client(
            json_response(404, NOT_FOUND),
            json_response(200, LINK_TYPES),
            httpx.Response(201),
        )

        result = await client.link_issues_resolving_type("PROJ-1", "PROJ-2", "Blokuje")

        assert result.ok
        assert client.handler.requests[1].url.path == "/rest/api/3/issueLinkType"
        assert client.handler.json_body()["type"] == {"name": "Blocks"}

    @pytest.mark.asyncio
    async def test_outward_phrase_resolved(self, make_client):
        client = make_client(
            json_response(404, {"errorMessages": ["No issue link type with name 'tests' found."]}),
            json_response(200, LINK_TYPES),
            httpx.Response(201),
        )

        result = await client.link_issues_resolving_type("PROJ-1", "PROJ-2", "tests")

        assert result.ok
        assert client.handler.json_body()["type"] == {"name": "Test"}

    @pytest.mark.asyncio
    async def test_no_match_lists_available_types(self, make_client):
        client = make_client(
            json_response(404, {"errorMessages": ["No issue link type with name 'Foo' found."]}),
            json_response(200, LINK_TYPES),
        )

        result = await client.link_issues_resolving_type("PROJ-1", "PROJ-2", "Foo")

        assert not result.ok
        assert "Available link types: Blocks, Relates, Test" in result.message
        assert len(client.handler.requests) == 2

    @pytest.mark.asyncio
    async def test_epic_link_returns_guidance(self, make_client):
        client = make_client(
            json_response(400, {"errorMessages": ["Cannot link using a system link type"]}))

        result = await client.link_issues_resolving_type("PROJ-1", "PROJ-2", "Epic-Story Link")

        assert not result.ok
        assert result.message.startswith(EPIC_LINK_GUIDANCE)
        assert len(client.handler.requests) == 1

    @pytest.mark.asyncio
    async def test_epic_link_to_missing_issue_not_rewritten(self, make_client):
        client = make_client(json_response(404, {"errorMessages": ["Issue does not exist"]}))

        result = await client.link_issues_resolving_type("PROJ-1", "NOPE-2", "Epic-Story Link")

        assert result.message == "Issue does not exist"
        assert result.status == 404
        assert len(client.handler.requests) == 1

    @pytest.mark.asyncio
    async def test_other_failure_returned_unchanged(self, make_client):
        client = make_client(json_response(404, {"errorMessages": ["Issue does not exist"]}))

        result = await client.link_issues_resolving_type("PROJ-1", "NOPE-2", "Blocks")

        assert result.message == "Issue does not exist"
        assert len(client.handler.requests) == 1


def test_find_link_type():
    available = LINK_TYPES["issueLinkTypes"]
    assert find_link_type(available, "relates to")["name"] == "Relates"
    assert find_link_type(available, "IS BLOCKED BY")["name"] == "Blocks"
    assert find_link_type(available, "Souvisí")["name"] == "Relates"
    assert find_link_type(available, "Clones") is None
