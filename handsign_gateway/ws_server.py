"""
Gateway server: model management over HTTP and a session WebSocket.

Handles:
- FastAPI routes for listing, reading and creating models
- WebSocket endpoint at /session with Bearer token authentication
- Single-controller lock (one client owns the gesture session at a time)
- Message parsing, dispatch to the GestureSession and outgoing event queue
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from handsign.capture import CaptureConfig, CaptureState, CaptureStateError
from handsign.curator import CurationError
from handsign.landmarks import Frame
from handsign.message import (
    AbortCaptureMessage,
    CancelCurationMessage,
    CaptureStateMessage,
    CapturedMessage,
    CommitFramesMessage,
    CountdownMessage,
    CreateModelMessage,
    CurationMessage,
    DetectionMessage,
    DetectionValidator,
    ErrorMessage,
    Message,
    MessageError,
    ModelInfoMessage,
    ScoresMessage,
    SelectModelMessage,
    SetPageMessage,
    StartCaptureMessage,
    ToggleFrameMessage,
    TrainedMessage,
    parse_message,
)
from handsign.model import TemplateModel
from handsign.session import GestureSession
from handsign.store import ModelStore, PersistenceError, check_model_name

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 256
DEFAULT_FRAMES = 10


@dataclass
class ControllerState:
    """State of the active controlling client."""
    client_id: str
    connected_at: float
    last_message_at: float
    message_count: int = 0


class CreateModelRequest(BaseModel):
    """Body of POST /models."""
    name: str
    number_of_frames: Optional[int] = Field(default=None, gt=0)


class GatewayServer:
    """
    Hosts one GestureSession and exposes it to one controlling client.

    Features:
    - Bearer token authentication
    - Single-controller lock: later clients get an error and are closed
    - Session events queued and sent by a per-connection sender task
    """

    def __init__(
        self,
        token: str,
        store: ModelStore,
        capture_config: Optional[CaptureConfig] = None,
        default_frames: int = DEFAULT_FRAMES,
    ):
        """
        Initialize the gateway server.

        Args:
            token: Required bearer token for WebSocket clients
            store: Model persistence
            capture_config: Capture timings handed to every session
            default_frames: Sample length for models created without one
        """
        self.token = token
        self.store = store
        self.default_frames = default_frames
        self.capture_config = capture_config

        # Session (single owner of the selected model)
        self.session: Optional[GestureSession] = None

        # Controller state
        self._active_controller: Optional[ControllerState] = None
        self._controller_lock = asyncio.Lock()
        self._outbox: Optional[asyncio.Queue] = None
        self._client_counter = 0
        self._validator = DetectionValidator()

        # Statistics
        self._total_messages = 0
        self._invalid_messages = 0
        self._dropped_events = 0

        # FastAPI app
        self.app = FastAPI(title="Handsign Gesture Gateway")

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "status": "ok",
                "active_controller": self.get_active_controller(),
                "model": self.session.model.name if self.session else None,
                "total_messages": self._total_messages,
            }

        @self.app.get("/models")
        async def list_models():
            try:
                names = await self.store.list_names()
            except PersistenceError as e:
                logger.error(f"Listing models failed: {e}")
                raise HTTPException(status_code=500, detail=str(e))
            return {"models": names}

        @self.app.get("/models/{name}")
        async def get_model(name: str):
            try:
                check_model_name(name)
                model = await self.store.load(name)
            except PersistenceError as e:
                raise HTTPException(status_code=400, detail=str(e))
            if model is None:
                raise HTTPException(status_code=404, detail=f"Model {name!r} not found")
            return model.to_snapshot().to_dict()

        @self.app.post("/models", status_code=status.HTTP_201_CREATED)
        async def create_model(request: CreateModelRequest):
            try:
                model = await self._create_model(
                    request.name, request.number_of_frames or self.default_frames
                )
            except FileExistsError as e:
                raise HTTPException(status_code=409, detail=str(e))
            except (PersistenceError, ValueError) as e:
                raise HTTPException(status_code=400, detail=str(e))
            return model.to_snapshot().to_dict()

        @self.app.websocket("/session")
        async def websocket_session(websocket: WebSocket):
            """WebSocket endpoint for the controlling client."""
            await self._handle_websocket(websocket)

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle incoming WebSocket connection."""
        auth_header = websocket.headers.get("authorization", "")
        if not self._verify_token(auth_header):
            logger.warning(f"Authentication failed from {websocket.client}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()

        self._client_counter += 1
        client_id = f"client_{self._client_counter}"

        async with self._controller_lock:
            if self._active_controller is not None:
                logger.warning(
                    f"Refusing {client_id}: session owned by {self._active_controller.client_id}"
                )
                await websocket.send_text(ErrorMessage(
                    reason="controller_busy",
                    detail=f"Session is owned by {self._active_controller.client_id}",
                ).to_json())
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                return

            now = time.time()
            self._active_controller = ControllerState(
                client_id=client_id, connected_at=now, last_message_at=now,
            )
            self._outbox = asyncio.Queue(maxsize=OUTBOX_SIZE)
            self._validator = DetectionValidator()

        logger.info(f"Controller connected: {client_id} from {websocket.client}")
        sender = asyncio.create_task(self._send_loop(websocket, self._outbox))

        if self.session is not None:
            self._emit_model_info()

        try:
            await self._receive_messages(websocket, client_id)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {client_id}")
        except Exception as e:
            logger.error(f"Error handling client {client_id}: {e}")
        finally:
            async with self._controller_lock:
                if self.session is not None:
                    self.session.close()
                self._active_controller = None
                outbox, self._outbox = self._outbox, None

            if outbox is not None:
                try:
                    outbox.put_nowait(None)
                except asyncio.QueueFull:
                    pass
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
            logger.info(f"Controller {client_id} released the session")

    def _verify_token(self, auth_header: str) -> bool:
        """Verify Bearer token."""
        if not auth_header:
            return False

        parts = auth_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return False

        return parts[1] == self.token

    async def _send_loop(self, websocket: WebSocket, outbox: asyncio.Queue) -> None:
        """Drain queued events to the client."""
        while True:
            msg = await outbox.get()
            if msg is None:
                break
            try:
                await websocket.send_text(msg.to_json())
            except Exception as e:
                logger.warning(f"Send failed: {e}")
                break

    def _emit(self, msg: Message) -> None:
        """Queue an event for the controlling client (dropped if none)."""
        if self._outbox is None:
            return
        try:
            self._outbox.put_nowait(msg)
        except asyncio.QueueFull:
            self._dropped_events += 1
            logger.warning(f"Outbox full, dropping {msg.type} event")

    async def _receive_messages(self, websocket: WebSocket, client_id: str) -> None:
        """Receive and dispatch messages from the controlling client."""
        while True:
            data = await websocket.receive_text()
            self._total_messages += 1

            if self._active_controller is not None:
                self._active_controller.last_message_at = time.time()
                self._active_controller.message_count += 1

            try:
                msg = parse_message(data)
            except MessageError as e:
                self._invalid_messages += 1
                logger.warning(f"Invalid message from {client_id}: {e}")
                self._emit(ErrorMessage(reason="invalid_message", detail=str(e)))
                continue

            try:
                await self._dispatch(msg)
            except PersistenceError as e:
                logger.error(f"Persistence error handling {msg.type}: {e}")
                self._emit(ErrorMessage(reason="persistence_error", detail=str(e)))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, msg: Message) -> None:
        if isinstance(msg, DetectionMessage):
            self._on_detection(msg)
        elif isinstance(msg, CreateModelMessage):
            try:
                model = await self._create_model(msg.name, msg.number_of_frames)
            except FileExistsError as e:
                self._emit(ErrorMessage(reason="model_exists", detail=str(e)))
                return
            except ValueError as e:
                self._emit(ErrorMessage(reason="invalid_model", detail=str(e)))
                return
            self._own(model)
        elif isinstance(msg, SelectModelMessage):
            model = await self.store.load(msg.name)
            if model is None:
                self._emit(ErrorMessage(reason="model_not_found", detail=msg.name))
                return
            self._own(model)
        elif self.session is None:
            self._emit(ErrorMessage(reason="no_model", detail=f"{msg.type} needs a selected model"))
        elif isinstance(msg, StartCaptureMessage):
            try:
                self.session.start_capture()
            except CaptureStateError as e:
                self._emit(ErrorMessage(reason="capture_active", detail=str(e)))
        elif isinstance(msg, AbortCaptureMessage):
            if not self.session.abort_capture():
                self._emit(ErrorMessage(reason="capture_not_active"))
        elif isinstance(msg, (SetPageMessage, ToggleFrameMessage)):
            try:
                if isinstance(msg, SetPageMessage):
                    self.session.set_page(msg.page)
                elif not self.session.toggle_frame(msg.index):
                    self._emit(ErrorMessage(reason="selection_full"))
            except (CurationError, IndexError) as e:
                self._emit(ErrorMessage(reason="curation_error", detail=str(e)))
                return
            self._emit_curation()
        elif isinstance(msg, CommitFramesMessage):
            accepted, reason = self.session.commit(msg.label)
            self._emit(TrainedMessage(label=msg.label, accepted=accepted, reason=reason))
            if accepted:
                self._emit_model_info()
        elif isinstance(msg, CancelCurationMessage):
            self.session.cancel_curation()
        else:
            self._emit(ErrorMessage(reason="unexpected_message", detail=msg.type))

    def _on_detection(self, msg: DetectionMessage) -> None:
        valid, reason = self._validator.validate(msg)
        if not valid:
            self._invalid_messages += 1
            # A rejected tick still counts as a tick without a hand
            if self.session is not None:
                self.session.handle_detection(None)
            return
        if self.session is None:
            logger.debug("Detection ignored: no model selected")
            return
        self.session.handle_detection(msg.to_frame())

    async def _create_model(self, name: str, number_of_frames: int) -> TemplateModel:
        """Create and persist an empty model. Raises FileExistsError if taken."""
        check_model_name(name)
        if await self.store.exists(name):
            raise FileExistsError(f"Model {name!r} already exists")
        model = TemplateModel(name, number_of_frames)
        await self.store.save(name, model)
        logger.info(f"Created model {name!r} (N={number_of_frames})")
        return model

    def _own(self, model: TemplateModel) -> None:
        """Make `model` the session's model, creating the session on first use."""
        if self.session is None:
            self.session = GestureSession(
                model,
                store=self.store,
                capture_config=self.capture_config,
                on_scores=lambda scores: self._emit(ScoresMessage(scores=scores)),
                on_countdown=lambda value: self._emit(CountdownMessage(value=value)),
                on_capture_state=self._on_capture_state,
                on_captured=self._on_captured,
                on_save_failed=self._on_save_failed,
            )
        else:
            self.session.replace_model(model)
        self._emit_model_info()

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _on_capture_state(self, state: CaptureState) -> None:
        self._emit(CaptureStateMessage(state=state.value))

    def _on_captured(self, frames: List[Frame]) -> None:
        self._emit(CapturedMessage(count=len(frames)))
        self._emit_curation()

    def _on_save_failed(self, name: str, error: PersistenceError) -> None:
        self._emit(ErrorMessage(reason="persistence_error", detail=f"Saving {name!r} failed: {error}"))

    def _emit_curation(self) -> None:
        curator = self.session.curator if self.session else None
        if curator is None:
            return
        self._emit(CurationMessage(
            required=curator.required,
            selected=curator.selected,
            page=curator.page,
            page_count=curator.page_count,
            frame_count=len(curator),
        ))

    def _emit_model_info(self) -> None:
        model = self.session.model
        self._emit(ModelInfoMessage(
            name=model.name,
            number_of_frames=model.number_of_frames,
            labels=list(model.labels),
            counts=dict(model.counts),
        ))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_active_controller(self) -> Optional[str]:
        """Get the ID of the active controller."""
        return self._active_controller.client_id if self._active_controller else None

    def get_stats(self) -> Dict[str, object]:
        """Get server statistics."""
        return {
            "active_controller": self.get_active_controller(),
            "total_messages": self._total_messages,
            "invalid_messages": self._invalid_messages,
            "dropped_events": self._dropped_events,
            "validator": self._validator.get_stats(),
            "session": self.session.get_stats() if self.session else None,
        }


def create_app(
    token: str,
    store: ModelStore,
    capture_config: Optional[CaptureConfig] = None,
    default_frames: int = DEFAULT_FRAMES,
):
    """
    Create FastAPI application with the gateway server.

    Args:
        token: Authentication token
        store: Model persistence
        capture_config: Capture timings
        default_frames: Sample length for models created without one

    Returns:
        Tuple of (FastAPI application, GatewayServer)
    """
    server = GatewayServer(
        token=token, store=store, capture_config=capture_config, default_frames=default_frames,
    )
    return server.app, server
