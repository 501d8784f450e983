"""Notification text for each kind of event.

Titles and bodies are Arabic, matching the language of the mobile app.
"""

from collections.abc import Iterable

from .models import Announcement, Comment, NotificationContent, ServiceRequest
from .storage.schema import DATA_SUBJECT_ID, DATA_TYPE

SERVICE_REQUEST_TYPE = "serviceRequest"
ANNOUNCEMENT_TYPE = "announcement"

ELLIPSIS = "..."

RESPONSE_PHRASES = {
    "accepted": "قبل المهمة",
    "completed": "أكمل المهمة بنجاح",
}

# Status changes written before comments carried an explicit flag
_LEGACY_STATUS_PREFIX = "قام"
_LEGACY_STATUS_MARKER = "بتغيير حالة التكت من"


def truncate_comment(text: str, limit: int = 100) -> str:
    """Shorten ``text`` to at most ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[: limit - len(ELLIPSIS)] + ELLIPSIS


def describe_response(response: str) -> str:
    """Human phrasing for a user's response to a task."""
    return RESPONSE_PHRASES.get(response, f"غيّر حالة المهمة، الحالة الآن: {response}")


def is_status_change_comment(comment: Comment) -> bool:
    if comment.is_status_change:
        return True
    content = comment.content.strip()
    return content.startswith(_LEGACY_STATUS_PREFIX) and _LEGACY_STATUS_MARKER in content


def is_auto_accept_comment(comment: Comment, sentences: Iterable[str]) -> bool:
    return comment.content in set(sentences)


def _ticket_data(request_id: str) -> dict[str, str]:
    return {DATA_TYPE: SERVICE_REQUEST_TYPE, DATA_SUBJECT_ID: request_id}


def new_task(request_id: str, ticket: ServiceRequest) -> NotificationContent:
    return NotificationContent(
        title=f"مهمة جديدة: {ticket.title}",
        body=(
            f"تم تعيين مهمة جديدة لك. النوع: {ticket.type}، "
            f"الأولوية: {ticket.priority}. اضغط للتفاصيل."
        ),
        data=_ticket_data(request_id),
    )


def task_assigned(request_id: str, ticket: ServiceRequest) -> NotificationContent:
    return NotificationContent(
        title=f"لقد تم اسناد مهمة لك: {ticket.title}",
        body=f"تم تعيينك لمهمة قائمة. النوع: {ticket.type}. اضغط للمتابعة فوراً!",
        data=_ticket_data(request_id),
    )


def new_comment(
    request_id: str, ticket: ServiceRequest, comment: Comment, max_length: int = 100
) -> NotificationContent:
    author = comment.user_name or "مستخدم"
    return NotificationContent(
        title=f"تعليق جديد من {author} على: {ticket.title}",
        body=truncate_comment(comment.content, max_length),
        data=_ticket_data(request_id),
    )


def arrived_on_site(request_id: str, ticket: ServiceRequest) -> NotificationContent:
    return NotificationContent(
        title=f"وصل الفني إلى الموقع: {ticket.title}",
        body="الفني الآن في موقع المهمة.",
        data=_ticket_data(request_id),
    )


def user_responded(
    request_id: str, ticket: ServiceRequest, user_name: str, response: str
) -> NotificationContent:
    name = user_name or "أحد الفنيين"
    return NotificationContent(
        title=f"تحديث على المهمة: {ticket.title}",
        body=f"{name} {describe_response(response)}",
        data=_ticket_data(request_id),
    )


def announcement(
    announcement_id: str, item: Announcement
) -> NotificationContent:
    return NotificationContent(
        title=item.head,
        body=item.body,
        data={DATA_TYPE: ANNOUNCEMENT_TYPE, DATA_SUBJECT_ID: announcement_id},
        image_urls=list(item.image_urls),
        file_attachments=[
            attachment.model_dump() for attachment in item.file_attachments
        ],
    )
