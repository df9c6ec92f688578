"""
Unit Tests for the Facebook Page Publisher.

Test Coverage:
    - Publishing sequence: attached photo, direct photo post, text post
    - Step ordering and merged responses for the audit log
    - Token eviction on Graph API error code 190
    - Post management operations (edit, delete, comment, boost, share)
    - Cursor paginated listing

Testing Strategy:
    requests.request is patched in social.base_client, where every remote
    call is made. Credentials come from a stub resolver.
"""
import json
from unittest.mock import patch

import pytest
import requests

from social.base_client import ErrorKind, PostContent
from social.credentials import CredentialResult
from social.facebook_client import FacebookPublisher


GRAPH_ERROR = {"error": {"message": "Something broke", "code": 1}}
TOKEN_ERROR = {"error": {"message": "Error validating access token", "code": 190}}


@pytest.fixture
def resolver(stub_resolver):
    return stub_resolver({"facebook": CredentialResult(success=True, token="page-token", target_id="111")})


@pytest.fixture
def publisher(resolver):
    return FacebookPublisher(resolver=resolver)


def _urls(mock_request):
    return [(c[0][0], c[0][1]) for c in mock_request.call_args_list]


class TestPublish:
    @patch("social.base_client.requests.request")
    def test_text_post(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"id": "111_222"})

        result = publisher.publish(PostContent(message="Hello", link="https://example.com/blog/hello"))

        assert result.success is True
        assert result.remote_id == "111_222"
        method, url = _urls(mock_request)[0]
        assert (method, url.rsplit("/", 2)[-2:]) == ("POST", ["111", "feed"])
        data = mock_request.call_args[1]["data"]
        assert data["message"] == "Hello"
        assert data["link"] == "https://example.com/blog/hello"
        assert data["access_token"] == "page-token"
        assert mock_request.call_args[1]["timeout"] == publisher.timeout

    @patch("social.base_client.requests.request")
    def test_development_link_not_sent(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"id": "111_222"})

        publisher.publish(PostContent(message="Hello", link="http://localhost/blog/hello"))

        assert "link" not in mock_request.call_args[1]["data"]

    @patch("social.base_client.requests.request")
    def test_photo_attached_to_feed_post(self, mock_request, publisher, mock_response):
        mock_request.side_effect = [
            mock_response(200, {"id": "photo-1"}),
            mock_response(200, {"id": "111_333"}),
        ]

        result = publisher.publish(PostContent(message="With image", image_url="https://example.com/a.png"))

        assert result.success is True
        assert result.remote_id == "111_333"
        upload, feed = mock_request.call_args_list
        assert upload[0][1].endswith("/111/photos")
        assert upload[1]["data"]["published"] == "false"
        assert feed[0][1].endswith("/111/feed")
        assert json.loads(feed[1]["data"]["attached_media[0]"]) == {"media_fbid": "photo-1"}
        assert set(result.response) == {"step_1", "step_2"}

    @patch("social.base_client.requests.request")
    def test_falls_back_to_photo_post(self, mock_request, publisher, mock_response):
        mock_request.side_effect = [
            mock_response(400, GRAPH_ERROR),
            mock_response(200, {"id": "photo-2", "post_id": "111_444"}),
        ]

        result = publisher.publish(PostContent(message="Caption", image_url="https://example.com/a.png"))

        assert result.success is True
        assert result.remote_id == "111_444"
        direct = mock_request.call_args_list[1]
        assert direct[0][1].endswith("/111/photos")
        assert direct[1]["data"]["caption"] == "Caption"

    @patch("social.base_client.requests.request")
    def test_falls_back_to_text_post(self, mock_request, publisher, mock_response):
        mock_request.side_effect = [
            mock_response(200, {"id": "photo-1"}),
            mock_response(500, GRAPH_ERROR),
            mock_response(400, GRAPH_ERROR),
            mock_response(200, {"id": "111_555"}),
        ]

        result = publisher.publish(PostContent(message="Text", image_url="https://example.com/a.png"))

        assert result.success is True
        assert result.remote_id == "111_555"
        assert [url.rsplit("/", 1)[-1] for _, url in _urls(mock_request)] == ["photos", "feed", "photos", "feed"]
        assert "image_url" not in mock_request.call_args[1]["data"]
        assert len(result.response) == 4

    @patch("social.base_client.requests.request")
    def test_all_steps_fail(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(500, GRAPH_ERROR)

        result = publisher.publish(PostContent(message="Text"))

        assert result.success is False
        assert result.error_kind == ErrorKind.REMOTE
        assert "Something broke" in result.error

    @patch("social.base_client.requests.request")
    def test_expired_token_is_evicted(self, mock_request, publisher, resolver, mock_response):
        mock_request.return_value = mock_response(400, TOKEN_ERROR)

        result = publisher.publish(PostContent(message="Text"))

        assert result.success is False
        assert result.error_kind == ErrorKind.CREDENTIAL
        assert resolver.invalidated == ["facebook"]

    @patch("social.base_client.requests.request")
    def test_timeout(self, mock_request, publisher):
        mock_request.side_effect = requests.Timeout("slow")

        result = publisher.publish(PostContent(message="Text"))

        assert result.success is False
        assert result.error_kind == ErrorKind.TIMEOUT

    @patch("social.base_client.requests.request")
    def test_credential_failure_makes_no_call(self, mock_request, stub_resolver):
        resolver = stub_resolver({"facebook": CredentialResult.failure("no token", misconfigured=True)})

        result = FacebookPublisher(resolver=resolver).publish(PostContent(message="Text"))

        assert result.error_kind == ErrorKind.CREDENTIAL
        mock_request.assert_not_called()

    @patch("social.base_client.requests.request")
    def test_disabled_publisher(self, mock_request, resolver):
        result = FacebookPublisher(resolver=resolver, config_enabled=False).publish(PostContent(message="x"))

        assert result.success is False
        mock_request.assert_not_called()


class TestPostManagement:
    @patch("social.base_client.requests.request")
    def test_delete(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"success": True})

        result = publisher.delete("111_222")

        assert result.success is True
        assert mock_request.call_args[0][0] == "DELETE"
        assert mock_request.call_args[0][1].endswith("/111_222")
        assert mock_request.call_args[1]["params"] == {"access_token": "page-token"}

    @patch("social.base_client.requests.request")
    def test_delete_reported_unsuccessful(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"success": False})

        assert publisher.delete("111_222").success is False

    @patch("social.base_client.requests.request")
    def test_update_message(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"success": True})

        assert publisher.update_message("111_222", "Edited").success is True
        assert mock_request.call_args[1]["data"]["message"] == "Edited"

    @patch("social.base_client.requests.request")
    def test_comment(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"id": "c-1"})

        result = publisher.comment("111_222", "Nice")

        assert result.remote_id == "c-1"
        assert mock_request.call_args[0][1].endswith("/111_222/comments")

    @patch("social.base_client.requests.request")
    def test_boost_pins_post(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"success": True})

        assert publisher.boost("111_222").success is True
        assert mock_request.call_args[1]["data"]["is_pinned"] == "true"

    @patch("social.base_client.requests.request")
    def test_share(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"id": "111_999"})

        result = publisher.share("111_222", "Look again")

        assert result.remote_id == "111_999"
        data = mock_request.call_args[1]["data"]
        assert data["link"] == "https://www.facebook.com/111_222"
        assert data["message"] == "Look again"

    @patch("social.base_client.requests.request")
    def test_list_posts_with_cursor(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {
            "data": [{"id": "111_1"}, {"id": "111_2"}],
            "paging": {"cursors": {"after": "CURSOR2"}, "next": "https://graph.facebook.com/next"},
        })

        result = publisher.list_posts(limit=500, cursor="CURSOR1")

        assert result.data == {"posts": [{"id": "111_1"}, {"id": "111_2"}], "next_cursor": "CURSOR2"}
        params = mock_request.call_args[1]["params"]
        assert params["limit"] == 100
        assert params["after"] == "CURSOR1"

    @patch("social.base_client.requests.request")
    def test_list_posts_last_page(self, mock_request, publisher, mock_response):
        mock_request.return_value = mock_response(200, {"data": [], "paging": {"cursors": {"after": "X"}}})

        assert publisher.list_posts().data["next_cursor"] is None

    @patch("social.base_client.requests.request")
    def test_list_pages_strips_tokens(self, mock_request, mock_response, stub_resolver):
        resolver = stub_resolver()
        resolver.config = {"facebook": {"access_token": "user-token"}}
        mock_request.return_value = mock_response(200, {"data": [{"id": "1", "name": "P", "access_token": "secret"}]})

        result = FacebookPublisher(resolver=resolver).list_pages()

        assert result.data == [{"id": "1", "name": "P"}]
