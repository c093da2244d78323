"""
depviewer Query API: the stored dependency graph over HTTP.

Usage:
 uvicorn depviewer.api.query:app --port 3000

Endpoints:
 GET  /health                     Health check
 GET  /api/dependencies           Every stored edge with endpoint details
 GET  /api/components?q=          Component search by name or id
 GET  /api/dependencies/{id}      Edges touching one component (?source=local forces the store)
 POST /api/open                   Open a component in the org
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel
from rich.console import Console

from ..errors import DependencyLookupError, FetchError
from ..graph_store import GraphStore
from ..harvester import Harvester
from ..records import Component, EdgeView
from ..resolver import DependencyResolver, ResolveMode
from ..salesforce_fetcher import MetadataSource
from ..settings import Settings
from ..sync import source_for

console = Console()


class OpenRequest(BaseModel):
    id: Optional[str] = None


class OpenResponse(BaseModel):
    success: bool


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[GraphStore] = None,
    source: Optional[MetadataSource] = None,
) -> FastAPI:
    """
    Build the API.

    A store or source passed in is used as-is and left open; otherwise both
    are created from settings for the lifetime of the app.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_store = app.state.store is None
        if owns_store:
            app.state.store = GraphStore.open(settings.store_url)
        yield
        if owns_store:
            app.state.store.close()

    app = FastAPI(
        title="depviewer Query API",
        description="Salesforce metadata dependency graph",
        version="0.4.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.source = source if source is not None else source_for(settings)

    def _resolver(request: Request) -> DependencyResolver:
        remote = request.app.state.source
        harvester = Harvester(remote, console=console, show_progress=False) if remote else None
        return DependencyResolver(request.app.state.store, harvester)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/dependencies", response_model=list[EdgeView])
    def all_dependencies(request: Request):
        """Every stored edge, joined with both endpoints."""
        try:
            return request.app.state.store.list_edges()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/components", response_model=list[Component])
    def components(request: Request, q: str = ""):
        """Search components by name or id."""
        try:
            return request.app.state.store.search_nodes(q, limit=settings.search_limit)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/dependencies/{component_id}", response_model=list[EdgeView])
    def dependencies_for(request: Request, component_id: str, source: str = Query("")):
        """
        Edges touching one component.

        Asks the org when one is connected, unless ?source=local.
        """
        live = request.app.state.source is not None and source != ResolveMode.LOCAL.value
        mode = ResolveMode.LIVE if live else ResolveMode.LOCAL
        console.print(f"Fetching dependencies for {component_id} ({mode.value})...")
        try:
            return _resolver(request).resolve(component_id, mode)
        except DependencyLookupError as e:
            console.print(f"[red]Error fetching from Salesforce: {e}[/red]")
            raise HTTPException(status_code=502, detail=str(e))

    @app.post("/api/open", response_model=OpenResponse)
    def open_component(request: Request, body: OpenRequest):
        """Open a component in the connected org."""
        remote = request.app.state.source
        if remote is None:
            raise HTTPException(
                status_code=400,
                detail="No target org connected (started without -o/--target-org?)",
            )
        if not body.id:
            raise HTTPException(status_code=400, detail="No ID provided")
        try:
            remote.open_component(body.id)
        except FetchError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return OpenResponse(success=True)

    return app


app = create_app()
