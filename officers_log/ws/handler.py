import json

from fastapi import WebSocket, WebSocketDisconnect

from officers_log.app import manager
from officers_log.errors import OfficersLogError
from officers_log.schemas.ws_messages import MAX_MESSAGE_BYTES, VALID_ACTIONS, validate_ws_payload
from officers_log.services import get_services
from officers_log.utils.logging_config import get_logger
from officers_log.ws.actions import ActionResult, get_action_dispatch
from officers_log.ws.context import WsSessionContext

_logger = get_logger("officers_log.ws.handler")

ACTION_DISPATCH = get_action_dispatch()


async def websocket_endpoint(websocket: WebSocket, user_id: str):
    """WebSocket entry point for one participant, using modular dispatch."""
    await manager.connect(websocket, user_id)
    _logger.info("WebSocket connected", extra={"user_id": user_id})

    ctx = WsSessionContext(websocket=websocket, user_id=user_id, services=get_services())

    try:
        while True:
            data = await websocket.receive_text()
            ctx.action = ""  # Reset per-turn state

            # Size validation
            if len(data.encode("utf-8", errors="replace")) > MAX_MESSAGE_BYTES:
                await manager.send_json({"type": "error", "code": "MESSAGE_TOO_LARGE",
                                         "message": f"Message exceeds {MAX_MESSAGE_BYTES // 1024}KB limit"}, websocket)
                continue

            try:
                payload = json.loads(data)
            except (json.JSONDecodeError, ValueError) as exc:
                await manager.send_json({"type": "error", "code": "INVALID_JSON",
                                         "message": f"Malformed JSON: {exc}"}, websocket)
                continue

            if not isinstance(payload, dict):
                await manager.send_json({"type": "error", "code": "INVALID_FORMAT",
                                         "message": "Expected a JSON object"}, websocket)
                continue

            action = payload.get("action")
            inner_data = payload.get("payload") or {}
            if action not in VALID_ACTIONS:
                await manager.send_json({"type": "error", "code": "UNKNOWN_ACTION",
                                         "message": f"Unknown action: {action}"}, websocket)
                continue

            # Validate payload
            ok, val_result = validate_ws_payload(action, inner_data)
            if not ok:
                await manager.send_json({"type": "error", "code": "INVALID_PAYLOAD", "message": val_result}, websocket)
                continue
            inner_data = val_result

            ctx.action = action
            handler = ACTION_DISPATCH[action]

            try:
                result: ActionResult = await handler(ctx, inner_data)
            except OfficersLogError as exc:
                _logger.warning("action failed: %s", exc, extra={"user_id": user_id, "action": action})
                await manager.send_json({"type": "error", "code": "ACTION_FAILED", "message": str(exc)}, websocket)
                continue

            if result.reply is not None:
                await manager.send_json(result.reply, websocket)

    except WebSocketDisconnect:
        _logger.info("WebSocket disconnected", extra={"user_id": user_id})
    except Exception as e:
        _logger.exception("Fatal error in WebSocket loop", extra={"user_id": user_id})
        try:
            await manager.send_json({"type": "error", "message": str(e)}, websocket)
        except Exception:
            _logger.debug("could not report fatal error, socket already closed")
    finally:
        manager.disconnect(websocket, user_id)
