import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

# AI Logic
from photo_enrichment.ai.cache import TTLCache
from photo_enrichment.ai.helpers import extract_exif_metadata
from photo_enrichment.ai.workflow import build_workflow, run_photo_workflow
from photo_enrichment.config import Settings, get_settings
from photo_enrichment.logger import setup_logging

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, graph=None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(timeout=settings.request_timeout) as http:
            if graph is not None:
                app.state.graph = graph
            else:
                cache = TTLCache(max_entries=settings.cache_max_entries)
                app.state.graph = build_workflow(settings, http, cache)
            yield

    app = FastAPI(title="Photo Enrichment API", lifespan=lifespan)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "null"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/photos/enrich")
    async def enrich_photo(
        request: Request,
        file: UploadFile = File(...),
        gps: Optional[str] = Form(None),
        device: Optional[str] = Form(None),
        keywords: Optional[str] = Form(None),
    ):
        """Runs the enrichment workflow on one uploaded image."""
        if not (file.content_type or "").startswith("image/"):
            raise HTTPException(status_code=400, detail="Only image uploads are allowed.")

        image_bytes = await file.read()
        if not image_bytes:
            raise HTTPException(status_code=400, detail="Uploaded file is empty.")

        final_state = await run_photo_workflow(
            request.app.state.graph,
            image_bytes,
            image_mime=file.content_type,
            filename=file.filename or "",
            metadata=extract_exif_metadata(image_bytes),
            gps_string=gps,
            device=device,
            food_keywords=[k.strip() for k in (keywords or "").split(",") if k.strip()],
        )

        if final_state.get("error") or not final_state.get("final_result"):
            raise HTTPException(
                status_code=502,
                detail=f"Enrichment failed: {final_state.get('error') or 'no result produced'}",
            )

        return {
            "status": "success",
            "filename": file.filename,
            "classification": final_state.get("classification"),
            "final_result": final_state["final_result"],
            "run_id": final_state.get("run_id"),
        }

    @app.get("/health")
    def health_check():
        return {"status": "running"}

    return app


if __name__ == "__main__":
    settings = get_settings()
    setup_logging(settings.log_level)
    # log_config=None keeps the handlers set up above
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_config=None)
