"""
Host command server.

Thin socket server that executes bridge requests against a Document.
One client at a time, newline-delimited JSON in both directions:

    -> {"id": 7, "method": "create_dimensions", "params": {"items": [...]}}
    <- {"id": 7, "result": {"success": true, "results": [...]}}
    <- {"id": 7, "error": {"message": "..."}}

Batch methods are planned into OperationSpecs and run through the
BatchExecutor in one transaction; single operations get their own
transaction; queries run without one.
"""

import contextlib
import json
import logging
import socket
import threading
import time
from typing import Any, Dict, List, Optional

from .. import __version__
from ..config import DEFAULT_PORT
from ..logger import (
    get_log_file_path,
    get_recent_logs,
    log_command,
    log_connection,
    log_exception,
    log_shutdown,
    log_startup,
)
from . import handlers
from .batch import BatchExecutor, HandlerRegistry, OperationSpec
from .document import INVALID_ELEMENT_ID, Document

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """The request as a whole is malformed or cannot be served."""

    pass


class HostServer:
    """Socket server dispatching bridge requests to the document."""

    # Command aliases for better discoverability
    COMMAND_ALIASES = {
        "ping": "health_check",
        "batch": "execute_batch",
        "create_dimension": "create_dimensions",
        "operate_elements": "operate_element",
        "set_parameter": "set_parameter_value_for_elements",
        "set_parameters": "set_parameter_value_for_elements",
        "tag": "create_tag",
        "tag_walls": "tag_all_walls",
        "create_grids": "create_grid",
        "set_graphic_overrides": "set_graphic_overrides_for_elements_in_view",
        "get_graphic_overrides": "get_graphic_overrides_for_element_ids_in_view",
        "create_type": "create_element_type",
        "model_statistics": "analyze_model_statistics",
        "get_warnings": "get_all_warnings_in_the_model",
    }

    # Commands that run frequently and should not spam the log
    _QUIET_COMMANDS = {"health_check", "get_logs"}

    def __init__(
        self,
        document: Optional[Document] = None,
        host: str = "127.0.0.1",
        port: int = DEFAULT_PORT,
        registry: Optional[HandlerRegistry] = None,
        transaction_prefix: str = "MCP",
    ):
        self.document = document or Document()
        self.host = host
        self.port = port
        self.transaction_prefix = transaction_prefix
        self.executor = BatchExecutor(self.document, registry or handlers.default_registry())

        self.running = False
        self.socket: Optional[socket.socket] = None
        self.client: Optional[socket.socket] = None
        self.thread: Optional[threading.Thread] = None
        self.ready = threading.Event()
        self._bind_error: Optional[OSError] = None

        # Document access is serialized across connections and direct calls
        self._lock = threading.Lock()

        # Operation activity tracking
        self._current_op: Optional[Dict[str, Any]] = None
        self._recent_ops: List[Dict[str, Any]] = []  # last 20 ops

    @property
    def address(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    def start(self, timeout: float = 5.0):
        """Start the server in a background thread and wait until it listens.

        Raises:
            OSError: If the port cannot be bound
        """
        self.running = True
        self.ready.clear()
        self.thread = threading.Thread(target=self._server_loop, name="cadbridge-host", daemon=True)
        self.thread.start()
        if not self.ready.wait(timeout):
            raise OSError(f"Host server did not start listening within {timeout}s")
        if self._bind_error:
            self.running = False
            raise self._bind_error
        log_startup("host", self.address)

    def stop(self):
        """Stop the server and close any client connection."""
        self.running = False
        if self.client:
            with contextlib.suppress(OSError):
                self.client.shutdown(socket.SHUT_RDWR)
            with contextlib.suppress(OSError):
                self.client.close()
        if self.socket:
            with contextlib.suppress(OSError):
                self.socket.close()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=5.0)
        log_shutdown("host")

    def serve_forever(self):
        """Start and block until interrupted."""
        self.start()
        try:
            while self.running and self.thread and self.thread.is_alive():
                self.thread.join(timeout=0.5)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.stop()

    def _server_loop(self):
        """Main server loop - accepts connections and handles commands."""
        self.socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Retry bind in case of stale TIME_WAIT from a previous run
        for attempt in range(3):
            try:
                self.socket.bind((self.host, self.port))
                break
            except OSError as e:
                if attempt < 2 and self.port:
                    logger.warning(f"Port {self.port} busy, retrying in 1s... ({e})")
                    time.sleep(1)
                else:
                    logger.error(f"Could not bind port {self.port}: {e}")
                    self._bind_error = e
                    self.socket.close()
                    self.ready.set()
                    return

        # Port 0 means "any free port"
        self.port = self.socket.getsockname()[1]
        self.socket.listen(1)
        self.socket.settimeout(1.0)
        self.ready.set()

        while self.running:
            try:
                self.client, addr = self.socket.accept()
                log_connection("host", "accepted", f"from {addr}")
                self._handle_client()
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    log_exception("server_loop", e)

    def _handle_client(self):
        """Handle requests from the connected client until it disconnects."""
        client = self.client
        client.settimeout(1.0)
        buffer = b""
        while self.running:
            try:
                data = client.recv(65536)
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    log_exception("handle_client", e)
                break
            if not data:
                break

            buffer += data
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                if not line.strip():
                    continue
                response = self.handle_line(line)
                try:
                    client.sendall((json.dumps(response) + "\n").encode("utf-8"))
                except OSError as e:
                    log_exception("handle_client send", e)
                    buffer = b""
                    break

        with contextlib.suppress(OSError):
            client.close()
        self.client = None
        log_connection("host", "closed", "client disconnected")

    def handle_line(self, line: bytes) -> Dict[str, Any]:
        """Turn one request line into one reply document."""
        try:
            request = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return {"id": None, "error": {"message": f"Invalid JSON: {e}"}}
        if not isinstance(request, dict):
            return {"id": None, "error": {"message": "Request must be a JSON object"}}

        request_id = request.get("id")
        method = request.get("method")
        params = request.get("params") or {}
        if not isinstance(method, str) or not method:
            return {"id": request_id, "error": {"message": "Missing 'method'"}}
        if not isinstance(params, dict):
            return {"id": request_id, "error": {"message": "'params' must be a JSON object"}}

        try:
            return {"id": request_id, "result": self.execute(method, params)}
        except Exception as e:
            return {"id": request_id, "error": {"message": str(e) or type(e).__name__}}

    def _record_activity(self, cmd_type, duration_ms, success):
        """Record operation in recent activity list."""
        self._recent_ops.insert(
            0,
            {
                "type": cmd_type,
                "duration_ms": round(duration_ms, 1),
                "success": success,
                "timestamp": time.time(),
            },
        )
        self._recent_ops = self._recent_ops[:20]

    def execute(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Execute one command and return its result document.

        Raises:
            CommandError: Unknown command or malformed request
            TransactionError: If the host transaction cannot be opened or committed
        """
        start_time = time.time()
        cmd_type = self.COMMAND_ALIASES.get(method, method)
        handler = getattr(self, f"_cmd_{cmd_type}", None)

        try:
            if handler is None:
                raise CommandError(f"Unknown command: {method}")
            with self._lock:
                self._current_op = {"type": cmd_type, "start_time": time.time()}
                try:
                    result = handler(params)
                finally:
                    self._current_op = None
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            if not isinstance(e, CommandError):
                log_exception(f"command {cmd_type}", e)
            log_command(cmd_type, params, duration_ms, error=str(e))
            self._record_activity(cmd_type, duration_ms, False)
            raise

        duration_ms = (time.time() - start_time) * 1000
        if cmd_type in self._QUIET_COMMANDS:
            logger.debug(f"{cmd_type} ({duration_ms:.1f}ms)")
        else:
            log_command(cmd_type, params, duration_ms, result)
        self._record_activity(cmd_type, duration_ms, True)
        return result

    # ==================== Parameter Helpers ====================

    def _require_params(self, params, *required_keys):
        missing = [k for k in required_keys if params.get(k) is None]
        if missing:
            raise CommandError(f"Missing required parameter(s): {', '.join(missing)}")

    def _items(self, params) -> List[Any]:
        items = params.get("items")
        if not isinstance(items, list):
            raise CommandError("'items' must be a list")
        return items

    def _element_ids(self, params) -> List[Any]:
        element_ids = params.get("elementIds")
        if not isinstance(element_ids, list):
            raise CommandError("'elementIds' must be a list")
        return element_ids

    def _run_batch(self, name: str, kind: str, items: List[Any]) -> Dict[str, Any]:
        specs = [OperationSpec(kind, item) for item in items]
        result = self.executor.execute(specs, f"{self.transaction_prefix} {name}")
        return result.to_dict()

    # ==================== Status Commands ====================

    def _cmd_health_check(self, params):
        """Return health status with operation activity."""
        result = {
            "status": "ok",
            "server": "cadbridge-host",
            "version": __version__,
            "document": self.document.name,
            "elementCount": len(self.document.elements),
            "activeViewId": self.document.active_view_id,
            "operations": sorted(self.executor.registry.kinds()),
            "recentOperations": self._recent_ops[:5],
        }
        return result

    def _cmd_get_logs(self, params):
        """Return the tail of the host log file."""
        lines = int(params.get("lines", 100))
        return {"logFile": get_log_file_path(), "logs": get_recent_logs(lines)}

    # ==================== Batch Commands ====================

    def _cmd_execute_batch(self, params):
        """Mixed batch: items are {"kind": ..., "params": {...}}."""
        specs = []
        for item in self._items(params):
            if isinstance(item, dict):
                raw = item.get("params")
                specs.append(OperationSpec(str(item.get("kind")), {} if raw is None else raw))
            else:
                specs.append(OperationSpec(str(item), {}))
        name = params.get("transactionName") or "Batch"
        return self.executor.execute(specs, f"{self.transaction_prefix} {name}").to_dict()

    def _cmd_create_dimensions(self, params):
        return self._run_batch("Create Dimensions", "create_dimension", self._items(params))

    def _cmd_operate_element(self, params):
        specs = []
        for item in self._items(params):
            action = str(item.get("action")) if isinstance(item, dict) else ""
            specs.append(OperationSpec(handlers.ACTION_KINDS.get(action, action), item))
        return self.executor.execute(specs, f"{self.transaction_prefix} Operate Elements").to_dict()

    def _cmd_set_parameter_value_for_elements(self, params):
        """Set one parameter across elements.

        Values come from params["values"][i] (one per element) or the shared
        params["value"]; an element without a value becomes a failed item.
        """
        self._require_params(params, "parameterName")
        element_ids = self._element_ids(params)
        values = params.get("values")
        if values is not None and not isinstance(values, list):
            raise CommandError("'values' must be a list")

        items = []
        for i, element_id in enumerate(element_ids):
            item = {"elementId": element_id, "parameterName": params["parameterName"]}
            if values is not None:
                if i < len(values):
                    item["value"] = values[i]
            elif "value" in params:
                item["value"] = params["value"]
            items.append(item)

        reply = self._run_batch("Set Parameter", "set_parameter", items)
        reply["updatedCount"] = reply["succeeded"]
        reply["totalCount"] = reply["total"]
        reply["skipped"] = [
            {"elementId": r.get("elementId"), "reason": r["error"]} for r in reply["results"] if not r["success"]
        ]
        return reply

    def _tag_reply(self, reply):
        reply["totalCreated"] = reply["succeeded"]
        reply["totalRequested"] = reply["total"]
        return reply

    def _cmd_create_tag(self, params):
        return self._tag_reply(self._run_batch("Create Tags", "create_tag", self._items(params)))

    def _cmd_tag_all_walls(self, params):
        """Tag every visible wall in the active view."""
        view_id = self.document.active_view_id
        if view_id == INVALID_ELEMENT_ID:
            raise CommandError("No active view")

        items = []
        for wall in handlers.walls_in_view(self.document, view_id):
            item: Dict[str, Any] = {"elementId": wall.id, "hasLeader": bool(params.get("useLeader", False))}
            if params.get("tagTypeId") not in (None, ""):
                item["tagTypeId"] = int(params["tagTypeId"])
            items.append(item)
        return self._tag_reply(self._run_batch("Tag All Walls", "create_tag", items))

    def _cmd_create_grid(self, params):
        return self._run_batch("Create Grid", "create_grid_line", self._items(params))

    def _cmd_set_graphic_overrides_for_elements_in_view(self, params):
        """Apply the same override settings to each element in one view."""
        settings = {k: v for k, v in params.items() if k != "elementIds"}
        items = [{**settings, "elementId": element_id} for element_id in self._element_ids(params)]
        return self._run_batch("Graphic Overrides", "set_graphic_overrides", items)

    # ==================== Single-Transaction Commands ====================

    def _cmd_create_material(self, params):
        with self.document.transaction(f"{self.transaction_prefix} Create Material"):
            return handlers.create_material(self.document, params)

    def _cmd_create_view(self, params):
        with self.document.transaction(f"{self.transaction_prefix} Create View"):
            return handlers.create_view(self.document, params)

    def _cmd_create_element_type(self, params):
        with self.document.transaction(f"{self.transaction_prefix} Create Element Type"):
            return handlers.create_element_type(self.document, params)

    # ==================== Query Commands ====================

    def _cmd_get_graphic_overrides_for_element_ids_in_view(self, params):
        if not self._element_ids(params):
            raise CommandError("'elementIds' must not be empty")
        return handlers.get_graphic_overrides(self.document, params)

    def _cmd_analyze_model_statistics(self, params):
        return handlers.analyze_model_statistics(self.document, params)

    def _cmd_get_all_warnings_in_the_model(self, params):
        return handlers.get_all_warnings(self.document, params)
