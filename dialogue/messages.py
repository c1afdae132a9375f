"""User-visible bot texts."""

from core.exceptions import ExternalServiceError

HELP = (
    "可用命令：\n"
    "/help - 显示此帮助\n"
    "/register - 注册新用户\n"
    "/resetpassword - 重置 Emby 密码\n"
    "/deleteuser - 删除您的账户\n"
    "/request - 请求新的媒体\n"
    "/cancel - 取消当前操作"
)
HELP_GROUP = "请查看群简介。"
CHECKIN = "本站无需每日签到。"

PRIVATE_ONLY = "请在私聊中使用此命令。"
NO_PERMISSION = "抱歉，您没有权限使用这个命令。"
INVALID_COMMAND = "无效的bot命令，请使用 /help 查看可用命令。"
CANCELLED = "操作已取消。"
USE_BUTTONS = "请使用上方按钮进行选择，或使用 /cancel 取消。"
CHOICE_EXPIRED = "该选项已过期。"
INTERNAL_ERROR = "系统内部错误，请联系管理员。[Error: Internal]"

ALREADY_REGISTERED = "您已经注册过了。"
NOT_REGISTERED = "您还没有注册，请先使用 /register 注册。"
ASK_USERNAME = "请输入您的用户名："
USERNAME_SLASH = "用户名不能以 / 开头，请重新输入。"
USERNAME_INVALID = "无效的用户名，请重新输入。"
REGISTERED = "注册成功。"
REGISTER_FAILED = "注册失败。"
REGISTER_RESTART = "请重新使用 /register 开始注册流程。"

PASSWORD_RESET = "密码已重置为空，请登录后尽快设置新密码。"

DELETE_CONFIRM_TOKEN = "confirm"
ASK_DELETE_CONFIRMATION = (
    "此操作将删除您的 Emby 账户且无法恢复。\n"
    "如确认删除，请输入 CONFIRM；输入其他任何内容将取消操作。"
)
ACCOUNT_DELETED = "您的账户已删除。"

ASK_SOURCE = "请选择您的数据来源"
ASK_KIND = "请选择您要请求的媒体类型"
INVALID_SOURCE = "无效的数据来源，请重新选择。"
INVALID_KIND = "无效的媒体类型，请重新选择。"
MEDIA_ID_NOT_NUMERIC = "媒体ID应为纯数字，请重新输入。"
METADATA_FAILED = "获取媒体信息失败，请确认ID是否正确。"
CONFIRM_BUTTON = "确认请求"
CANCEL_BUTTON = "取消"
ASK_CONFIRMATION = "确认请求该媒体吗？"
REQUEST_SUBMITTED = "请求已提交，入库后会通知您。"
ALREADY_REQUESTED = "该媒体已经被请求过了。"
CONFIRMATION_EXPIRED = "该确认已过期，请重新使用 /request 发起请求。"

REQUEST_LIST_CAPTION = "媒体请求列表"

SUMMARY_LIMIT = 300


def ask_media_id(source: str, kind: str) -> str:
    return f"请输入您要从 {source} 请求的 {kind} ID："


def chat_id_text(chat_id: int) -> str:
    return f"Chat ID: {chat_id}"


def external_failure(error: ExternalServiceError) -> str:
    """Message for a failed external call.

    Only ``user_message`` (a short provider explanation) is ever shown; other
    failures get the generic text with the support tag.
    """
    return error.user_message or f"请联系管理员。[Error: {error.tag}]"


def confirmation_card(title: str, summary: str | None, url: str) -> str:
    parts = [title]
    if summary:
        if len(summary) > SUMMARY_LIMIT:
            summary = summary[:SUMMARY_LIMIT] + "…"
        parts.append(summary)
    parts.append(url)
    parts.append(ASK_CONFIRMATION)
    return "\n\n".join(parts)
