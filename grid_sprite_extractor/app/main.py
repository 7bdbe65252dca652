"""HTTP service exposing the sprite extraction pipeline."""
from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from .config.settings import AppSettings, load_settings
from .pipeline import SpritePipeline
from .services.output_writer import result_to_payload
from .utils.imaging import ImageLoadError, decode_image

logger = logging.getLogger(__name__)

app = FastAPI(title="Grid Sprite Extractor", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_pipeline() -> SpritePipeline:
    from .services.detector import OnnxDetector

    settings = get_settings()
    detector = OnnxDetector(settings.model_path, providers=settings.providers)
    return SpritePipeline(detector, settings)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sprites")
async def extract_sprites(
    image: UploadFile = File(...),
    include_debug: bool = Query(default=False),
    pipeline: SpritePipeline = Depends(get_pipeline),
) -> dict:
    payload = await image.read()
    try:
        decoded = decode_image(payload)
    except ImageLoadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = await run_in_threadpool(pipeline.run, decoded)
    logger.info("Extracted %d sprites from upload %s", len(result.sprites), image.filename)
    return result_to_payload(result, include_debug=include_debug)
