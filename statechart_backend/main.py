"""
Statechart Backend - FastAPI Application

This is the main entry point for the statechart editor backend.
It provides:
- REST API for the project gallery, topic/state/transition editing and undo/redo
- Validation, PlantUML generation and rendering through Kroki
- Field configuration endpoints
- ZIP/JSON export and JSON import
- WebSocket endpoint for real-time updates
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from statechart_core import (
    SystemNodeType,
    TopicKind,
    TransitionKind,
    has_blocking_errors,
    issues_for_topic,
    summarize_project,
    validate_project,
    validation_summary,
)
from statechart_core.puml import generate_aggregate_puml, generate_topic_puml

from .config import settings
from .export import export_projects_zip
from .models import (
    CreateProjectRequest,
    CreateStateRequest,
    CreateTopicRequest,
    CreateTransitionRequest,
    FieldValueRequest,
    FlowTypeColorRequest,
    ImportProjectRequest,
    MarkTopicEndRequest,
    RenameProjectRequest,
    ReplaceFieldConfigRequest,
    UpdateInstrumentRequest,
    UpdateStateRequest,
    UpdateTopicRequest,
    UpdateTransitionRequest,
)
from .project_manager import (
    DuplicateInstrumentError,
    InvalidFieldValueError,
    NotFoundError,
    project_manager,
)
from .renderer import KrokiRenderer, RenderError
from .websocket_manager import ws_manager

logger = logging.getLogger(__name__)

renderer = KrokiRenderer(base_url=settings.kroki_url, timeout=settings.render_timeout)


# --- Async change notification ---
# Bridge between sync ProjectManager callbacks and async WebSocket broadcasts

_change_event = asyncio.Event()
_changed_projects: list[Optional[str]] = []


def on_project_change(project_id: Optional[str]):
    """Callback for project changes - queues the id and wakes the broadcaster."""
    if project_id not in _changed_projects:
        _changed_projects.append(project_id)
    _change_event.set()


async def change_broadcaster():
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await _change_event.wait()
        _change_event.clear()

        pending = list(_changed_projects)
        _changed_projects.clear()
        for project_id in pending:
            await ws_manager.notify_project_updated(project_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    project_manager.configure_persistence(settings.workspace, settings.autosave)
    if settings.workspace.exists():
        try:
            project_manager.load_workspace()
        except ValueError:
            logger.exception("Could not load workspace %s; starting empty", settings.workspace)
    else:
        logger.info("No workspace at %s; starting empty", settings.workspace)

    project_manager.on_change(on_project_change)
    broadcaster_task = asyncio.create_task(change_broadcaster())

    yield

    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass


# --- FastAPI App ---

app = FastAPI(
    title="Statechart Editor API",
    description="Backend API for instrument state machine diagrams",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _not_found(e: NotFoundError):
    return HTTPException(status_code=404, detail=str(e))


def _conflict(e: DuplicateInstrumentError):
    return HTTPException(status_code=409, detail=str(e))


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


# --- Gallery ---

@app.get("/api/projects")
async def list_projects(
    search: Optional[str] = Query(default=None),
    revision: Optional[str] = Query(default=None)
):
    """List projects grouped by revision, optionally filtered."""
    projects = project_manager.search_projects(search=search, revision=revision)
    groups = project_manager.group_by_revision(projects)
    return {
        "success": True,
        "groups": [
            {
                "revision": rev,
                "projects": [
                    {"id": p.id, "name": p.name, "instrument": p.instrument.model_dump(by_alias=True, exclude_none=True)}
                    for p in members
                ],
            }
            for rev, members in groups
        ],
        "revisions": project_manager.revisions(),
        "state": project_manager.get_state(),
    }


@app.post("/api/projects")
async def create_project(request: CreateProjectRequest):
    """Create a project; a duplicate (type, revision) pair is a conflict."""
    try:
        project = project_manager.create_project(
            instrument_type=request.type,
            revision=request.revision,
            description=request.description,
            label=request.label,
            name=request.name
        )
        return {"success": True, "project": project.to_json_dict()}
    except DuplicateInstrumentError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/projects/import")
async def import_project(request: ImportProjectRequest):
    """Import a project from its JSON export."""
    try:
        project = project_manager.import_project_json(request.json_text)
        return {"success": True, "project": project.to_json_dict()}
    except DuplicateInstrumentError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/projects/{project_id}")
async def get_project(project_id: str):
    project = project_manager.get_project(project_id)
    if project:
        return {"success": True, "project": project.to_json_dict()}
    raise HTTPException(status_code=404, detail="Project not found")


@app.patch("/api/projects/{project_id}")
async def rename_project(project_id: str, request: RenameProjectRequest):
    try:
        project = project_manager.rename_project(project_id, request.name)
        return {"success": True, "project": project.to_json_dict()}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/api/projects/{project_id}/instrument")
async def update_instrument(project_id: str, request: UpdateInstrumentRequest):
    """Update instrument fields; the (type, revision) pair must stay unique."""
    try:
        project = project_manager.update_instrument(
            project_id,
            instrument_type=request.type,
            revision=request.revision,
            label=request.label,
            description=request.description
        )
        return {"success": True, "project": project.to_json_dict()}
    except NotFoundError as e:
        raise _not_found(e)
    except DuplicateInstrumentError as e:
        raise _conflict(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/projects/{project_id}")
async def delete_project(project_id: str):
    if project_manager.delete_project(project_id):
        return {"success": True}
    raise HTTPException(status_code=404, detail="Project not found")


@app.post("/api/projects/{project_id}/select")
async def select_project(project_id: str):
    try:
        project_manager.select_project(project_id)
        return {"success": True, "activeProjectId": project_id}
    except NotFoundError as e:
        raise _not_found(e)


@app.get("/api/projects/{project_id}/export")
async def export_project(project_id: str):
    """Export one project as JSON."""
    try:
        text = project_manager.export_project_json(project_id)
    except NotFoundError as e:
        raise _not_found(e)
    return Response(content=text, media_type="application/json")


# --- Topics ---

@app.post("/api/projects/{project_id}/topics")
async def create_topic(project_id: str, request: CreateTopicRequest):
    """Create a topic; a new root topic demotes the previous one."""
    try:
        topic_data = project_manager.create_topic(project_id, request.id, request.kind, request.label)
        return {"success": True, "topic": topic_data.model_dump(mode="json", by_alias=True, exclude_none=True)}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/api/projects/{project_id}/topics/{topic_id}")
async def update_topic(project_id: str, topic_id: str, request: UpdateTopicRequest):
    try:
        topic_data = project_manager.update_topic(project_id, topic_id, label=request.label)
        return {"success": True, "topic": topic_data.model_dump(mode="json", by_alias=True, exclude_none=True)}
    except NotFoundError as e:
        raise _not_found(e)


@app.post("/api/projects/{project_id}/topics/{topic_id}/root")
async def set_root_topic(project_id: str, topic_id: str):
    try:
        topic_data = project_manager.set_root_topic(project_id, topic_id)
        return {"success": True, "topic": topic_data.model_dump(mode="json", by_alias=True, exclude_none=True)}
    except NotFoundError as e:
        raise _not_found(e)


@app.post("/api/projects/{project_id}/topics/{topic_id}/select")
async def select_topic(project_id: str, topic_id: str):
    try:
        project_manager.select_topic(project_id, topic_id)
        return {"success": True, "selectedTopicId": topic_id}
    except NotFoundError as e:
        raise _not_found(e)


@app.delete("/api/projects/{project_id}/topics/{topic_id}")
async def delete_topic(project_id: str, topic_id: str):
    try:
        if project_manager.delete_topic(project_id, topic_id):
            return {"success": True}
    except NotFoundError as e:
        raise _not_found(e)
    raise HTTPException(status_code=404, detail="Topic not found")


# --- States ---

def _state_json(state) -> dict:
    return state.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/api/projects/{project_id}/topics/{topic_id}/states")
async def create_state(project_id: str, topic_id: str, request: CreateStateRequest):
    try:
        state = project_manager.add_state(
            project_id, topic_id, request.id, label=request.label, x=request.x, y=request.y
        )
        return {"success": True, "state": _state_json(state)}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/projects/{project_id}/topics/{topic_id}/system-nodes/{node_type}")
async def add_system_node(project_id: str, topic_id: str, node_type: SystemNodeType):
    """Add an InstrumentEnd, TopicEnd or Fork node."""
    try:
        if node_type == SystemNodeType.INSTRUMENT_END:
            state = project_manager.add_instrument_end(project_id, topic_id)
        elif node_type == SystemNodeType.TOPIC_END:
            state = project_manager.add_topic_end(project_id, topic_id)
        elif node_type == SystemNodeType.FORK:
            state = project_manager.add_fork(project_id, topic_id)
        else:
            raise HTTPException(status_code=400, detail=f"{node_type.value} nodes are created with their topic")
        return {"success": True, "state": _state_json(state)}
    except NotFoundError as e:
        raise _not_found(e)


@app.patch("/api/projects/{project_id}/topics/{topic_id}/states/{state_id}")
async def update_state(project_id: str, topic_id: str, state_id: str, request: UpdateStateRequest):
    """Update a user state; position changes are allowed for system nodes too."""
    try:
        state = None
        if request.label is not None or request.stereotype is not None:
            state = project_manager.update_state(
                project_id, topic_id, state_id, label=request.label, stereotype=request.stereotype
            )
        if request.x is not None and request.y is not None:
            state = project_manager.move_state(project_id, topic_id, state_id, request.x, request.y)
        if state is None:
            raise HTTPException(status_code=400, detail="Nothing to update")
        return {"success": True, "state": _state_json(state)}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.put("/api/projects/{project_id}/topics/{topic_id}/states/{state_id}/topic-end")
async def mark_topic_end(project_id: str, topic_id: str, state_id: str, request: MarkTopicEndRequest):
    try:
        state = project_manager.mark_topic_end(project_id, topic_id, state_id, request.end_kind)
        return {"success": True, "state": _state_json(state)}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/projects/{project_id}/topics/{topic_id}/states/{state_id}")
async def delete_state(project_id: str, topic_id: str, state_id: str):
    """Delete a state and its transitions."""
    try:
        if project_manager.delete_state(project_id, topic_id, state_id):
            return {"success": True}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    raise HTTPException(status_code=404, detail="State not found")


# --- Transitions ---

def _transition_json(transition) -> dict:
    return transition.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.post("/api/projects/{project_id}/topics/{topic_id}/transitions")
async def create_transition(project_id: str, topic_id: str, request: CreateTransitionRequest):
    try:
        transition = project_manager.add_transition(
            project_id,
            topic_id,
            from_state=request.from_state,
            to_state=request.to_state,
            message_type=request.message_type,
            flow_type=request.flow_type,
            revision=request.revision,
            instrument=request.instrument,
            topic=request.topic,
            source_handle_id=request.source_handle_id,
            target_handle_id=request.target_handle_id
        )
        return {"success": True, "transition": _transition_json(transition)}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/api/projects/{project_id}/topics/{topic_id}/transitions/{transition_id}")
async def update_transition(project_id: str, topic_id: str, transition_id: str, request: UpdateTransitionRequest):
    try:
        transition = project_manager.update_transition(
            project_id, topic_id, transition_id, **request.model_dump(exclude_none=True)
        )
        return {"success": True, "transition": _transition_json(transition)}
    except NotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/projects/{project_id}/topics/{topic_id}/transitions/{transition_id}")
async def delete_transition(project_id: str, topic_id: str, transition_id: str):
    try:
        if project_manager.delete_transition(project_id, topic_id, transition_id):
            return {"success": True}
    except NotFoundError as e:
        raise _not_found(e)
    raise HTTPException(status_code=404, detail="Transition not found")


# --- Analysis & Validation ---

@app.get("/api/projects/{project_id}/validate")
async def validate(project_id: str, topic_id: Optional[str] = Query(default=None)):
    """
    Validate a project against the configured vocabularies.

    Returns the issues, a summary and whether any issue blocks saving.
    With topic_id, only that topic's issues are returned.
    """
    project = project_manager.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")

    issues = validate_project(project, project_manager.field_config)
    if topic_id is not None:
        issues = issues_for_topic(issues, topic_id)

    return {
        "success": True,
        "issues": [issue.to_dict() for issue in issues],
        "summary": validation_summary(issues),
        "blocking": has_blocking_errors(issues)
    }


@app.get("/api/projects/{project_id}/summary")
async def summarize(project_id: str):
    """Get a structural summary of a project."""
    project = project_manager.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"success": True, "summary": summarize_project(project).to_dict()}


def _puml_for(project_id: str, topic_id: Optional[str]) -> str:
    project = project_manager.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")

    if topic_id is not None:
        puml = generate_topic_puml(project, topic_id)
        if puml is None:
            raise HTTPException(status_code=404, detail="Topic not found")
        return puml

    puml = generate_aggregate_puml(project)
    if puml is None:
        raise HTTPException(status_code=400, detail="No root topic defined")
    return puml


@app.get("/api/projects/{project_id}/puml")
async def get_puml(project_id: str, topic_id: Optional[str] = Query(default=None)):
    """PlantUML for one topic, or the aggregate diagram when topic_id is omitted."""
    return {"success": True, "puml": _puml_for(project_id, topic_id)}


@app.post("/api/projects/{project_id}/render")
def render(project_id: str, topic_id: Optional[str] = Query(default=None)):
    """Render a topic (or the aggregate) to SVG; renderer failures map to 502."""
    puml = _puml_for(project_id, topic_id)
    try:
        result = renderer.render(puml)
    except RenderError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": str(e), "status": e.status_code, "body": e.body}
        )
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail={"message": f"Renderer unreachable: {e}"})
    return {"success": True, "svg": result.svg, "fromCache": result.from_cache}


@app.post("/api/render/cache/clear")
async def clear_render_cache():
    renderer.clear_cache()
    return {"success": True}


# --- Field Configuration ---

@app.get("/api/field-config")
async def get_field_config():
    return {"success": True, "fieldConfig": project_manager.field_config.model_dump(mode="json", by_alias=True)}


@app.post("/api/field-config/values")
async def add_field_value(request: FieldValueRequest):
    """Add a vocabulary entry; names must follow the Java enum convention."""
    try:
        values = project_manager.add_field_value(request.field, request.value)
        return {"success": True, "field": request.field.value, "values": values}
    except InvalidFieldValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/api/field-config/values")
async def remove_field_value(request: FieldValueRequest):
    try:
        values = project_manager.remove_field_value(request.field, request.value)
        return {"success": True, "field": request.field.value, "values": values}
    except NotFoundError as e:
        raise _not_found(e)


@app.put("/api/field-config/colors")
async def set_flow_type_color(request: FlowTypeColorRequest):
    try:
        colors = project_manager.set_flow_type_color(request.flow_type, request.color)
        return {"success": True, "flowTypeColors": colors}
    except NotFoundError as e:
        raise _not_found(e)


@app.put("/api/field-config")
async def replace_field_config(request: ReplaceFieldConfigRequest):
    try:
        config = project_manager.replace_field_config(request.config)
        return {"success": True, "fieldConfig": config.model_dump(mode="json", by_alias=True)}
    except InvalidFieldValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# --- Undo/Redo ---

@app.post("/api/undo")
async def undo():
    """Undo the last project change."""
    if project_manager.undo():
        return {"success": True, "state": project_manager.get_state()}
    return {"success": False, "message": "Nothing to undo"}


@app.post("/api/redo")
async def redo():
    """Redo the last undone change."""
    if project_manager.redo():
        return {"success": True, "state": project_manager.get_state()}
    return {"success": False, "message": "Nothing to redo"}


# --- Workspace & Export ---

@app.post("/api/workspace/save")
async def save_workspace():
    try:
        path = project_manager.save_workspace(project_manager.workspace_path or settings.workspace)
        return {"success": True, "file_path": str(path)}
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save: {e}")


@app.get("/api/export")
async def export_zip():
    """Download every project as a ZIP of PlantUML files plus a JSON snapshot."""
    data = export_projects_zip(project_manager.projects)
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="statemachines.zip"'}
    )


# --- Enums for Frontend ---

@app.get("/api/enums")
async def get_enums():
    return {
        "topicKinds": [k.value for k in TopicKind],
        "transitionKinds": [k.value for k in TransitionKind],
        "systemNodeTypes": [t.value for t in SystemNodeType],
    }


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients connect here to receive project_updated events.
    """
    await ws_manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
