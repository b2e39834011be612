"""
Prompt Variables
================

System prompt variables sent with each agent call.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from agent_relay.models.schemas import ChatContext, SearchUser

DEFAULT_PAGE = "dashboard"


def build_tutor_prompt(user_id: str, context: Optional[ChatContext] = None) -> str:
    """Describe where the learner is so the tutor can ground its answer."""
    context = context or ChatContext()
    lines = [
        "You are a tutor helping a learner inside their organization's learning platform.",
        f"Learner id: {user_id}",
        f"Current page: {context.current_page or DEFAULT_PAGE}",
    ]
    if context.organization_id:
        lines.append(f"Organization: {context.organization_id}")
    if context.course_id:
        lines.append(f"Course: {context.course_id}")
    if context.lesson_id:
        lines.append(f"Lesson: {context.lesson_id}")
    return "\n".join(lines)


def tutor_variables(user_id: str, context: Optional[ChatContext] = None) -> Dict[str, Any]:
    return {"prompt": build_tutor_prompt(user_id, context), "user_id": user_id}


def search_variables(user: SearchUser, jd_id: Optional[str] = None) -> Dict[str, Any]:
    """Variables for a sourcing search; the user name falls back to the email local part."""
    variables: Dict[str, Any] = {
        "user_name": user.name or user.email.split("@")[0],
        "datetime": datetime.now(timezone.utc).isoformat(),
    }
    if jd_id:
        variables["attached_jd"] = jd_id
    return variables
