from dotenv import load_dotenv
load_dotenv()

from fastapi import WebSocket

from officers_log.app import app
from officers_log.routers import actors, missions
from officers_log.ws.handler import websocket_endpoint

app.include_router(actors.router)
app.include_router(missions.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.websocket("/ws/{user_id}")
async def ws_route(websocket: WebSocket, user_id: str):
    await websocket_endpoint(websocket, user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("officers_log.main:app", host="0.0.0.0", port=8000, reload=False)
