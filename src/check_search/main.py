"""FastAPI application for corpus-wide policy checks."""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import load_settings
from .errors import CheckSearchError, FindingNotFoundError, UnsupportedDiagnosticError
from .models import (
    BatchFixRequest,
    BatchFixResponse,
    CodeAction,
    CodeActionRequest,
    Command,
    DiagnosticEntry,
    FixEdit,
    LocalFixRequest,
    PolicyUpdateOutcome,
    PolicyUpdateRequest,
    PolicyUpdateResponse,
    ScanResponse,
    Status,
)
from .pipeline import PipelineController, create_controller
from .scanner import HttpSearchBackend

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_controller: Optional[PipelineController] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _controller
    settings = load_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    async with AsyncExitStack() as stack:
        backend = None
        if settings.search_url:
            backend = await stack.enter_async_context(
                HttpSearchBackend(settings.search_url, timeout=settings.request_timeout)
            )
        if backend is not None or settings.corpus_path:
            _controller = create_controller(settings, backend)
            await _controller.start()
        else:
            logger.warning("No CHECK_SEARCH_CORPUS_PATH or CHECK_SEARCH_SEARCH_URL configured")

        yield

        if _controller is not None:
            await _controller.close()
            _controller = None


app = FastAPI(
    title="Check Search",
    description="Scans repositories for dependency and CI config patterns and enforces policy rules",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS - allow common development origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://localhost:8000",
    ],
    allow_methods=["POST", "GET"],
    allow_headers=["*"],
)


def get_controller() -> PipelineController:
    if _controller is None:
        raise HTTPException(status_code=503, detail="No corpus configured")
    return _controller


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/scan", response_model=ScanResponse)
async def scan(controller: PipelineController = Depends(get_controller)) -> ScanResponse:
    """Run a scan epoch now and return the resulting diagnostics."""
    try:
        published = await controller.run_epoch("scan requested")
    except CheckSearchError as e:
        logger.error(f"Scan failed: {e}")
        raise HTTPException(status_code=500, detail=f"Scan failed: {str(e)}")

    return ScanResponse(
        epoch=controller.epoch,
        published=published,
        diagnostics=controller.registry.to_entries(),
        status=controller.status.current(),
    )


@app.get("/diagnostics", response_model=list[DiagnosticEntry])
async def diagnostics(
    uri: Optional[str] = None,
    controller: PipelineController = Depends(get_controller),
) -> list[DiagnosticEntry]:
    """
    Current diagnostic set.

    - **uri**: Optional document URI to restrict the result to one document
    """
    if uri is not None:
        found = controller.registry.query(uri)
        return [DiagnosticEntry(document_uri=uri, diagnostics=found)] if found else []
    return controller.registry.to_entries()


@app.get("/status", response_model=Status)
async def status(controller: PipelineController = Depends(get_controller)) -> Status:
    """Current pending/success/failure summary."""
    return controller.status.current()


@app.post("/code-actions", response_model=list[CodeAction])
async def code_actions(
    request: CodeActionRequest,
    controller: PipelineController = Depends(get_controller),
) -> list[CodeAction]:
    """Code actions for a document's diagnostics."""
    in_scope = request.diagnostics
    if in_scope is None:
        in_scope = controller.registry.query(request.document_uri)
    try:
        document = await controller.documents.open_document(request.document_uri)
        return await controller.fixes.provide_code_actions(document, in_scope)
    except UnsupportedDiagnosticError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CheckSearchError as e:
        logger.error(f"Code actions failed: {e}")
        raise HTTPException(status_code=500, detail=f"Code actions failed: {str(e)}")


@app.post("/fixes/local", response_model=FixEdit)
async def local_fix(
    request: LocalFixRequest,
    controller: PipelineController = Depends(get_controller),
) -> FixEdit:
    """Edit that remediates one diagnostic against the document's current text."""
    try:
        document = await controller.documents.open_document(request.diagnostic.document_uri)
        return controller.fixes.compute_local_fix(request.diagnostic, document)
    except FindingNotFoundError as e:
        raise HTTPException(status_code=409, detail=f"Fix failed: {str(e)}")
    except UnsupportedDiagnosticError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CheckSearchError as e:
        logger.error(f"Local fix failed: {e}")
        raise HTTPException(status_code=500, detail=f"Fix failed: {str(e)}")


@app.post("/fixes/batch", response_model=BatchFixResponse)
async def batch_fix(
    request: BatchFixRequest,
    controller: PipelineController = Depends(get_controller),
) -> BatchFixResponse:
    """Aggregate edit fixing every diagnostic of a kind across the corpus."""
    try:
        edit, affected = await controller.fixes.compute_batch_fix(request.kind)
    except CheckSearchError as e:
        logger.error(f"Batch fix failed: {e}")
        raise HTTPException(status_code=500, detail=f"Batch fix failed: {str(e)}")

    noun = "occurrence" if affected == 1 else "occurrences"
    return BatchFixResponse(title=f"Fix {affected} {noun}", edit=edit, affected_documents=affected)


def _policy_response(outcome: PolicyUpdateOutcome) -> JSONResponse:
    body = PolicyUpdateResponse(outcome=outcome).model_dump(mode="json")
    if outcome == PolicyUpdateOutcome.not_implemented:
        return JSONResponse(status_code=501, content=body)
    return JSONResponse(status_code=202, content=body)


@app.post("/policy", response_model=PolicyUpdateResponse)
async def update_policy(
    request: PolicyUpdateRequest,
    controller: PipelineController = Depends(get_controller),
) -> JSONResponse:
    """
    Record a policy decision. The write is asynchronous; a rescan follows once it lands.

    - **scope**: only "repository" is supported; "global" answers 501
    """
    outcome = controller.policy.update(request.kind, request.name, request.decision, request.scope)
    return _policy_response(outcome)


@app.post("/commands", response_model=PolicyUpdateResponse)
async def execute_command(
    command: Command,
    controller: PipelineController = Depends(get_controller),
) -> JSONResponse:
    """Execute a command attached to a code action."""
    try:
        outcome = controller.fixes.execute_command(command)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _policy_response(outcome)
