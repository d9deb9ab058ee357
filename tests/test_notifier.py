"""Tests for webhook notification delivery (network replaced by httpx.MockTransport)."""

import json

import httpx
import pytest
from httpx import AsyncClient

from app.models.subscription import NotifyChannel
from app.services.notifier import (
    Notifier,
    build_payload,
    normalize_response,
    resolve_webhook_url,
)


def _transport(status_code: int = 200, body=None, calls: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status_code, json=body)
        return httpx.Response(status_code, text=body or "")

    return httpx.MockTransport(handler)


class TestResolveWebhookUrl:
    def test_templates(self):
        assert resolve_webhook_url(NotifyChannel.wxwork, "k1") == (
            "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=k1"
        )
        assert resolve_webhook_url(NotifyChannel.feishu, "k2") == (
            "https://open.feishu.cn/open-apis/bot/v2/hook/k2"
        )
        assert resolve_webhook_url(NotifyChannel.serverchan, "SCT3") == (
            "https://sctapi.ftqq.com/SCT3.send"
        )

    def test_full_url_is_used_verbatim(self):
        url = "https://example.org/hooks/abc?x=1"
        assert resolve_webhook_url(NotifyChannel.feishu, url) == url

    def test_none_channel_unsupported(self):
        with pytest.raises(ValueError):
            resolve_webhook_url(NotifyChannel.none, "token")


class TestBuildPayload:
    def test_wxwork(self):
        assert build_payload(NotifyChannel.wxwork, "T", "B") == {
            "msgtype": "text",
            "text": {"content": "T\n\nB"},
        }

    def test_feishu(self):
        assert build_payload(NotifyChannel.feishu, "T", "B") == {
            "msg_type": "text",
            "content": {"text": "T\nB"},
        }

    def test_serverchan(self):
        assert build_payload(NotifyChannel.serverchan, "T", "B") == {"title": "T", "desp": "B"}


class TestNormalizeResponse:
    def test_each_envelope(self):
        assert normalize_response(NotifyChannel.wxwork, {"errcode": 0, "errmsg": "ok"}) == (0, "ok")
        assert normalize_response(NotifyChannel.feishu, {"code": 19001, "msg": "bad"}) == (
            19001,
            "bad",
        )
        assert normalize_response(NotifyChannel.serverchan, {"code": 0, "message": ""}) == (0, "")

    def test_unrecognised_body(self):
        assert normalize_response(NotifyChannel.wxwork, ["nope"])[0] == -1
        assert normalize_response(NotifyChannel.feishu, {"msg": "no code"})[0] == -1


class TestNotifierSend:
    @pytest.mark.asyncio
    async def test_success_posts_provider_payload(self):
        calls: list[httpx.Request] = []
        notifier = Notifier(transport=_transport(body={"errcode": 0, "errmsg": "ok"}, calls=calls))

        result = await notifier.send(NotifyChannel.wxwork, "key-1", "Title", "Body")

        assert result.ok is True
        assert len(calls) == 1
        assert calls[0].url.params["key"] == "key-1"
        assert json.loads(calls[0].content) == {
            "msgtype": "text",
            "text": {"content": "Title\n\nBody"},
        }

    @pytest.mark.asyncio
    async def test_provider_error_code(self):
        notifier = Notifier(transport=_transport(body={"code": 19024, "msg": "Key Words Not Found"}))
        result = await notifier.send(NotifyChannel.feishu, "hook", "T", "B")
        assert result.ok is False
        assert result.error == "Notify API error(19024): Key Words Not Found"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        notifier = Notifier(transport=_transport(status_code=500, body={"code": 0}))
        result = await notifier.send(NotifyChannel.serverchan, "SCT", "T", "B")
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        notifier = Notifier(transport=_transport(body="<html>gateway timeout</html>"))
        result = await notifier.send(NotifyChannel.wxwork, "key", "T", "B")
        assert result.ok is False

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = Notifier(transport=httpx.MockTransport(handler))
        result = await notifier.send(NotifyChannel.wxwork, "key", "T", "B")
        assert result.ok is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "channel, token",
        [(NotifyChannel.none, "token"), (NotifyChannel.wxwork, None), ("wxwork", "")],
    )
    async def test_no_request_without_channel_or_token(self, channel, token):
        calls: list = []
        notifier = Notifier(transport=_transport(body={"errcode": 0}, calls=calls))
        result = await notifier.send(channel, token, "T", "B")
        assert result.ok is False
        assert result.error == "Channel is set to none or token is missing"
        assert calls == []


# ── POST /api/v1/notify/test ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_notify_test_requires_auth(client: AsyncClient):
    response = await client.post(
        "/api/v1/notify/test",
        json={"notify_channel": "wxwork", "notify_token": "abc"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_notify_test_sends_message(client: AsyncClient, auth_headers: dict, notifier):
    response = await client.post(
        "/api/v1/notify/test",
        json={"notify_channel": "feishu", "notify_token": "abc"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert notifier.sent[0]["channel"] == NotifyChannel.feishu
    assert notifier.sent[0]["token"] == "abc"


@pytest.mark.asyncio
async def test_notify_test_reports_failure(client: AsyncClient, auth_headers: dict):
    response = await client.post(
        "/api/v1/notify/test",
        json={"notify_channel": "wxwork", "notify_token": "bad-token"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"ok": False, "error": "provider said no"}


@pytest.mark.asyncio
async def test_notify_test_rejects_unknown_channel(client: AsyncClient, auth_headers: dict):
    response = await client.post(
        "/api/v1/notify/test",
        json={"notify_channel": "pigeon", "notify_token": "abc"},
        headers=auth_headers,
    )
    assert response.status_code == 422
