"""
WebSocket RPC server.

Clients send {"id", "method", "params"} frames and get back
{"type": "res", "id", "ok", ...}. Lifecycle events from the bus are
pushed to every connected client as {"type": "event", ...} frames.
"""

import asyncio
import json
import threading

import websockets

from . import ui
from .events import EventBroadcaster
from .handlers import create_handlers


class RpcServer:
    """Serves the handler table over websockets on its own event loop."""

    def __init__(self, runtime, host: str = "localhost", port: int = 3001):
        self.runtime = runtime
        self.host = host
        self.port = port
        self.handlers = create_handlers(runtime)
        self.broadcaster = EventBroadcaster()
        self._unsubscribe = self.broadcaster.attach(runtime.bus)
        self.loop = None
        self._stop = None
        self._thread = None

    def dispatch(self, frame: dict) -> dict:
        """Run one request frame through the handler table."""
        method = frame.get("method")
        handler = self.handlers.get(method)
        if handler is None:
            result = {"ok": False, "error": f"Unknown method: {method}"}
        else:
            params = frame.get("params") or {}
            if not isinstance(params, dict):
                result = {"ok": False, "error": "params must be an object"}
            else:
                result = handler(params)
        return {"type": "res", "id": frame.get("id"), **result}

    async def websocket_handler(self, websocket):
        self.broadcaster.add_client(websocket)
        try:
            async for message in websocket:
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    await websocket.send(json.dumps({"type": "res", "id": None, "ok": False, "error": "Invalid JSON"}))
                    continue
                if not isinstance(frame, dict):
                    await websocket.send(json.dumps({"type": "res", "id": None, "ok": False, "error": "Frame must be an object"}))
                    continue
                # Handlers do blocking store and gateway I/O
                response = await asyncio.get_running_loop().run_in_executor(None, self.dispatch, frame)
                await websocket.send(json.dumps(response))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.broadcaster.remove_client(websocket)

    async def serve(self):
        self.loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        self.broadcaster.enable(self.loop)
        async with websockets.serve(self.websocket_handler, self.host, self.port):
            ui.console.print(f"[{ui.CYAN}]🔌 RPC listening at ws://{self.host}:{self.port}[/]")
            await self._stop.wait()

    def run_forever(self):
        """Block until interrupted."""
        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            pass
        finally:
            self.close()

    def start(self):
        """Start serving in a background thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=lambda: asyncio.run(self.serve()), daemon=True)
        self._thread.start()

    def stop(self):
        if self.loop is not None and self._stop is not None:
            self.loop.call_soon_threadsafe(self._stop.set)
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self.close()

    def close(self):
        self.broadcaster.disable()
        self._unsubscribe()
        self.runtime.shutdown()
