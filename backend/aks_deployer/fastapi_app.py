# fastapi_app.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from .adapters import PipelineDispatcher
from .config import Settings, settings as default_settings
from .github_integration import PushEvent, verify_signature
from .pipeline import DeploymentPipeline, new_run_id

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
class TriggerBody(BaseModel):
    commit: Optional[str] = Field(default=None, description="Commit to deploy; defaults to branch head")


def create_app(
    settings: Optional[Settings] = None,
    dispatcher: Optional[PipelineDispatcher] = None,
) -> FastAPI:
    settings = settings or default_settings
    if dispatcher is None:
        dispatcher = PipelineDispatcher(
            pipeline_factory=lambda: DeploymentPipeline.from_settings(settings),
            tracked_branch=settings.GIT_BRANCH,
            history_size=settings.RUN_HISTORY_SIZE,
        )

    app = FastAPI(title="AKS Deployer", version="1.0.0")
    app.state.settings = settings
    app.state.dispatcher = dispatcher

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------
    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/api/health")
    async def api_health():
        return {"status": "healthy", "app": settings.APP_NAME, "branch": settings.GIT_BRANCH}

    # -------------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------------
    async def github_webhook(request: Request, background_tasks: BackgroundTasks):
        """Receive GitHub deliveries; a push to the tracked branch starts one run."""
        body = await request.body()
        if not verify_signature(
            settings.GITHUB_WEBHOOK_SECRET, body, request.headers.get("X-Hub-Signature-256")
        ):
            logger.warning("❌ Rejected webhook delivery with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

        event_type = request.headers.get("X-GitHub-Event", "")
        delivery_id = request.headers.get("X-GitHub-Delivery")

        if event_type == "ping":
            return {"status": "pong"}
        if event_type != "push":
            return _accepted({"status": "ignored", "reason": f"event {event_type or 'unknown'} ignored"})

        try:
            event = PushEvent.model_validate_json(body)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid push payload: {e.errors()}")

        decision = dispatcher.handle_push(delivery_id, event)
        if not decision.accepted:
            logger.info(f"Ignoring delivery {delivery_id}: {decision.reason}")
            return _accepted({"status": "ignored", "reason": decision.reason, "run_id": decision.run_id})

        background_tasks.add_task(dispatcher.run, decision.run_id, "webhook", decision.commit)
        return _accepted({"status": "queued", "run_id": decision.run_id, "commit": decision.commit})

    app.add_api_route(settings.WEBHOOK_PATH, github_webhook, methods=["POST"])

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------
    @app.get("/api/runs")
    def api_runs() -> List[Dict[str, Any]]:
        return dispatcher.runs()

    @app.get("/api/runs/{run_id}")
    def api_run(run_id: str) -> Dict[str, Any]:
        run = dispatcher.get(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
        return run

    @app.post("/api/runs", status_code=202)
    def api_trigger(body: TriggerBody, background_tasks: BackgroundTasks):
        run_id = new_run_id()
        logger.info(f"🚀 Manual trigger, run {run_id}")
        background_tasks.add_task(dispatcher.run, run_id, "manual", body.commit)
        return {"status": "queued", "run_id": run_id}

    return app


def _accepted(content: Dict[str, Any]):
    return JSONResponse(status_code=202, content=content)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=default_settings.LOG_LEVEL.upper())
    uvicorn.run(app, host=default_settings.HTTP_HOST, port=default_settings.HTTP_PORT)
