from __future__ import annotations

import asyncio
from typing import Any

import httpx
from supabase import Client, PostgrestAPIError, create_client

from queryloop.config import settings
from queryloop.errors import PersistenceError, SchemaDriftError
from queryloop.services.logger import log_db_operation

# Columns added after the initial schema; older deployments may lack them.
OPTIONAL_COLUMNS: dict[str, tuple[str, ...]] = {
    "Library": ("uploadedFiles",),
    "Chats": ("uploadedFiles", "usedDirectModel"),
}


def get_client() -> Client:
    return create_client(settings.supabase_url, settings.supabase_anon_key)


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


def drift_field(message: str, table: str, row: dict[str, Any]) -> str | None:
    """Name the optional column a store error complains about, if any."""
    lowered = message.lower()
    for column in OPTIONAL_COLUMNS.get(table, ()):
        if column in row and column.lower() in lowered:
            return column
    return None


def _raise_write_error(e: Exception, operation: str, table: str, row: dict[str, Any]) -> None:
    message = getattr(e, "message", None) or str(e)
    log_db_operation(operation, table, "error", error=message)
    if isinstance(e, PostgrestAPIError):
        field = drift_field(message, table, row)
        if field or "column" in message.lower():
            raise SchemaDriftError(message, field=field) from e
    raise PersistenceError("Failed to save search data. Please try again.") from e


async def _insert(table: str, row: dict[str, Any]) -> dict[str, Any]:
    try:
        result = await _execute(client().table(table).insert(row))
    except (PostgrestAPIError, httpx.HTTPError) as e:
        _raise_write_error(e, "insert", table, row)
    if not result.data:
        log_db_operation("insert", table, "error", error="no data returned")
        raise PersistenceError("Failed to save search data. Please try again.")
    log_db_operation("insert", table, "success")
    return result.data[0]


# --- Conversations (Library) ---


async def create_conversation(row: dict[str, Any]) -> dict[str, Any]:
    return await _insert("Library", row)


async def get_conversation(conversation_id: str) -> dict[str, Any] | None:
    try:
        result = await _execute(
            client().table("Library").select("*, Chats(*)").eq("libId", conversation_id)
        )
    except (PostgrestAPIError, httpx.HTTPError) as e:
        log_db_operation("select", "Library", "error", error=str(e))
        raise PersistenceError("Failed to load conversation. Please try again.") from e
    return result.data[0] if result.data else None


async def list_conversations(user_email: str | None = None) -> list[dict[str, Any]]:
    query = client().table("Library").select("*")
    if user_email:
        query = query.eq("userEmail", user_email)
    try:
        result = await _execute(query.order("created_at", desc=True))
    except (PostgrestAPIError, httpx.HTTPError) as e:
        log_db_operation("select", "Library", "error", error=str(e))
        raise PersistenceError("Failed to load history. Please try again.") from e
    return result.data or []


# --- Messages (Chats) ---


async def insert_chat(row: dict[str, Any]) -> dict[str, Any]:
    return await _insert("Chats", row)


async def update_reaction(message_id: str, liked: bool, disliked: bool) -> None:
    try:
        await _execute(
            client().table("Chats").update({"liked": liked, "disliked": disliked}).eq("id", message_id)
        )
    except (PostgrestAPIError, httpx.HTTPError) as e:
        log_db_operation("update", "Chats", "error", error=str(e))
        raise PersistenceError("Failed to save your reaction.") from e
    log_db_operation("update", "Chats", "success", details=f"reaction on {message_id}")
