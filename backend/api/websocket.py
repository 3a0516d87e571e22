"""WebSocket handler for real-time notification streaming.

This module streams the session's notifications (run state, agent status and
findings, execution log appends and updates) to the dashboard and receives
commands (like cancel) from clients.
"""

import asyncio
import contextlib
from typing import TYPE_CHECKING

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from events import NotificationType

if TYPE_CHECKING:
    from run_manager import RunManager

logger = structlog.get_logger(__name__)

websocket_router = APIRouter()

_run_manager: "RunManager | None" = None


def set_run_manager(manager: "RunManager") -> None:
    """Set the run manager used by WebSocket command handlers."""
    global _run_manager
    _run_manager = manager
    logger.info("websocket_run_manager_configured")


def get_run_manager() -> "RunManager":
    """Return configured run manager for WebSocket command handlers."""
    if _run_manager is None:
        raise RuntimeError(
            "RunManager not configured for WebSocket handlers. "
            "Call set_run_manager() during startup."
        )
    return _run_manager


@websocket_router.websocket("/ws/{session_id}")
async def websocket_endpoint(websocket: WebSocket, session_id: str) -> None:
    """WebSocket endpoint for real-time notification streaming.

    This endpoint handles bidirectional communication:
    - Server -> Client: Notifications (run state, agent status, log entries)
    - Client -> Server: Commands (cancel, ping)

    Args:
        websocket: The WebSocket connection.
        session_id: The session ID to stream notifications for.
    """
    await websocket.accept()

    logger.info("websocket_connected", session_id=session_id)

    event_bus = get_run_manager().event_bus

    # History covers everything published so far; the queue only carries
    # what comes after it.
    history, queue = event_bus.subscribe_with_replay(session_id)

    try:
        if history:
            logger.info(
                "replaying_notification_history",
                session_id=session_id,
                notification_count=len(history),
            )
            for notification in history:
                try:
                    await websocket.send_json(notification.model_dump(mode="json"))
                except WebSocketDisconnect:
                    logger.info("websocket_disconnect_during_replay", session_id=session_id)
                    return
                except Exception as e:
                    logger.error("websocket_replay_error", session_id=session_id, error=str(e))
                    return

        async def send_notifications() -> None:
            """Forward notifications from the event bus to the WebSocket client."""
            try:
                while True:
                    notification = await queue.get()
                    if notification.type == NotificationType.SESSION_CLOSED:
                        await websocket.send_json(notification.model_dump(mode="json"))
                        logger.info("session_closed_sentinel", session_id=session_id)
                        break

                    await websocket.send_json(notification.model_dump(mode="json"))
                    logger.debug(
                        "notification_sent",
                        session_id=session_id,
                        notification_type=notification.type.value,
                    )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_send", session_id=session_id)
            except Exception as e:
                logger.error("websocket_send_error", session_id=session_id, error=str(e))

        async def receive_commands() -> None:
            """Receive and process commands from the WebSocket client."""
            try:
                while True:
                    data = await websocket.receive_json()
                    if not isinstance(data, dict):
                        logger.warning("invalid_ws_message", session_id=session_id)
                        continue
                    command_type = data.get("type")

                    logger.info(
                        "command_received",
                        session_id=session_id,
                        command_type=command_type,
                    )

                    if command_type == "cancel":
                        result = await handle_cancel_command(data.get("run_id"))
                        await websocket.send_json({"type": "cancel_result", **result})
                    elif command_type == "ping":
                        await websocket.send_json(
                            {"type": "pong", "timestamp": data.get("timestamp")}
                        )
                    else:
                        logger.warning(
                            "unknown_command",
                            session_id=session_id,
                            command_type=command_type,
                        )
            except WebSocketDisconnect:
                logger.info("websocket_disconnect_during_receive", session_id=session_id)
            except Exception as e:
                logger.error("websocket_receive_error", session_id=session_id, error=str(e))

        send_task = asyncio.create_task(send_notifications())
        receive_task = asyncio.create_task(receive_commands())

        # Wait for either task to complete (usually due to disconnect)
        done, pending = await asyncio.wait(
            [send_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", session_id=session_id)
    except Exception as e:
        logger.error("websocket_error", session_id=session_id, error=str(e))
    finally:
        event_bus.unsubscribe(session_id, queue)
        logger.info("websocket_cleanup_complete", session_id=session_id)


async def handle_cancel_command(run_id: str | None) -> dict[str, object]:
    """Handle a cancel command from the WebSocket client.

    Without a run id the active run, if any, is cancelled.

    Returns:
        {"run_id", "cancelled"} describing the outcome.
    """
    manager = get_run_manager()
    if run_id is None:
        active = manager.get_active_run()
        run_id = active.run_id if active else None
    if run_id is None:
        logger.info("cancel_command_no_active_run")
        return {"run_id": None, "cancelled": False}

    logger.info("cancel_command_processing", run_id=run_id)
    try:
        cancelled = await manager.cancel_run(run_id)
    except Exception as e:
        logger.error("cancel_command_failed", run_id=run_id, error=str(e))
        return {"run_id": run_id, "cancelled": False, "error": str(e)}
    return {"run_id": run_id, "cancelled": cancelled}
