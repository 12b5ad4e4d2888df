from __future__ import annotations

from typing import Any

from queryloop.models.events import EventType, SSEEvent


def message_recorded(message_id: str, route: str, results_count: int) -> SSEEvent:
    return SSEEvent(
        event=EventType.MESSAGE_RECORDED,
        data={"message_id": message_id, "route": route, "results_count": results_count},
    )


def provider_fallback(provider: str, reason: str | None) -> SSEEvent:
    data: dict[str, Any] = {"provider": provider}
    if reason:
        data["reason"] = reason
    return SSEEvent(event=EventType.PROVIDER_FALLBACK, data=data)


def generation_started(message_id: str, job_handle: str, use_direct_model: bool) -> SSEEvent:
    return SSEEvent(
        event=EventType.GENERATION_STARTED,
        data={
            "message_id": message_id,
            "job_handle": job_handle,
            "use_direct_model": use_direct_model,
        },
    )


def poll_started(job_handle: str, message_id: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"job_handle": job_handle}
    if message_id:
        data["message_id"] = message_id
    return SSEEvent(event=EventType.POLL_STARTED, data=data)


def poll_completed(job_handle: str, attempts: int) -> SSEEvent:
    return SSEEvent(event=EventType.POLL_COMPLETED, data={"job_handle": job_handle, "attempts": attempts})


def poll_failed(job_handle: str, message: str) -> SSEEvent:
    return SSEEvent(event=EventType.POLL_FAILED, data={"job_handle": job_handle, "message": message})


def poll_timed_out(job_handle: str, attempts: int) -> SSEEvent:
    return SSEEvent(event=EventType.POLL_TIMED_OUT, data={"job_handle": job_handle, "attempts": attempts})


def poll_cancelled(job_handle: str) -> SSEEvent:
    return SSEEvent(event=EventType.POLL_CANCELLED, data={"job_handle": job_handle})


def conversation_refreshed(message_count: int, loading_message_id: str | None) -> SSEEvent:
    return SSEEvent(
        event=EventType.CONVERSATION_REFRESHED,
        data={"message_count": message_count, "loading_message_id": loading_message_id},
    )


def answer_received(message_ids: list[str], all_answered: bool) -> SSEEvent:
    return SSEEvent(
        event=EventType.ANSWER_RECEIVED,
        data={"message_ids": message_ids, "all_answered": all_answered},
    )


def error(message: str, code: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if code:
        data["code"] = code
    return SSEEvent(event=EventType.ERROR, data=data)
