from fastapi import APIRouter, Depends

from app.dependencies import get_notifier, require_api_key
from app.schemas.crawler import NotifyTestRequest
from app.services.notifier import Notifier

router = APIRouter()


@router.post(
    "/notify/test",
    summary="Send a test notification",
    description=(
        "Delivers a fixed test message through the given channel and token and returns "
        "the normalised provider result ({ok, error?})."
    ),
)
async def send_test_notification(
    body: NotifyTestRequest,
    notifier: Notifier = Depends(get_notifier),
    _: str = Depends(require_api_key),
):
    result = await notifier.send_test(body.notify_channel, body.notify_token)
    return result.as_dict()
