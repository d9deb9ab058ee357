"""Webhook notification delivery for WeCom, Feishu and ServerChan.

Each provider wants its own JSON body and answers with its own envelope.
Both differences stay inside this module: callers hand over a channel, a
token (or full webhook URL), a title and a body, and get back a
NotifyResult.
"""

import logging
import re
from dataclasses import dataclass

import httpx

from app.config import settings
from app.models.subscription import NotifyChannel

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

_WEBHOOK_TEMPLATES: dict[NotifyChannel, str] = {
    NotifyChannel.wxwork: "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key={token}",
    NotifyChannel.feishu: "https://open.feishu.cn/open-apis/bot/v2/hook/{token}",
    NotifyChannel.serverchan: "https://sctapi.ftqq.com/{token}.send",
}

# Provider envelope → (code field, message field); code 0 means delivered
_RESULT_FIELDS: dict[NotifyChannel, tuple[str, str]] = {
    NotifyChannel.wxwork: ("errcode", "errmsg"),
    NotifyChannel.feishu: ("code", "msg"),
    NotifyChannel.serverchan: ("code", "message"),
}

TEST_TITLE = "Dormitricity notification test"
TEST_BODY = (
    "[Dorm electricity] This is a test message from Dormitricity. "
    "If you can read it, your notification settings work."
)


@dataclass(frozen=True)
class NotifyResult:
    ok: bool
    error: str | None = None

    def as_dict(self) -> dict:
        data: dict = {"ok": self.ok}
        if self.error is not None:
            data["error"] = self.error
        return data


def resolve_webhook_url(channel: NotifyChannel, token: str) -> str:
    """Use *token* verbatim if it is already a URL, else fill the channel template."""
    if _URL_RE.match(token):
        return token
    try:
        return _WEBHOOK_TEMPLATES[channel].format(token=token)
    except KeyError:
        raise ValueError(f"Unsupported notify channel '{channel.value}'") from None


def build_payload(channel: NotifyChannel, title: str, body: str) -> dict:
    if channel == NotifyChannel.wxwork:
        return {"msgtype": "text", "text": {"content": f"{title}\n\n{body}"}}
    if channel == NotifyChannel.feishu:
        return {"msg_type": "text", "content": {"text": f"{title}\n{body}"}}
    if channel == NotifyChannel.serverchan:
        return {"title": title, "desp": body}
    raise ValueError(f"Unsupported notify channel '{channel.value}'")


def normalize_response(channel: NotifyChannel, data: object) -> tuple[int, str]:
    """Reduce a provider response body to (code, message)."""
    fields = _RESULT_FIELDS.get(channel)
    if fields is None or not isinstance(data, dict):
        return -1, "Unrecognised response"
    code_field, msg_field = fields
    code = data.get(code_field)
    message = data.get(msg_field) or ""
    try:
        return int(code), str(message)
    except (TypeError, ValueError):
        return -1, str(message) or "Missing result code"


class Notifier:
    """Posts notifications to webhook providers.

    *transport* is passed straight to httpx and lets tests substitute a
    MockTransport for the network.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.notify_timeout_sec

    async def send(
        self, channel: NotifyChannel | str, token: str | None, title: str, body: str
    ) -> NotifyResult:
        channel = NotifyChannel(channel)
        if channel == NotifyChannel.none or not token:
            return NotifyResult(False, "Channel is set to none or token is missing")

        try:
            url = resolve_webhook_url(channel, token)
            payload = build_payload(channel, title, body)
        except ValueError as exc:
            return NotifyResult(False, str(exc))

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, json=payload)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Notification via %s failed: %s", channel.value, exc)
            return NotifyResult(False, str(exc) or exc.__class__.__name__)

        code, message = normalize_response(channel, data)
        if resp.is_error or code != 0:
            logger.warning(
                "Notification via %s rejected (HTTP %d): code=%d msg=%s",
                channel.value,
                resp.status_code,
                code,
                message,
            )
            return NotifyResult(False, f"Notify API error({code}): {message}")

        return NotifyResult(True)

    async def send_test(self, channel: NotifyChannel | str, token: str | None) -> NotifyResult:
        return await self.send(channel, token, TEST_TITLE, TEST_BODY)


# Module-level singleton used throughout the application
notifier = Notifier()
