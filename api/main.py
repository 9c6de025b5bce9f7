# api/main.py
import hashlib
import traceback
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, File, Form, UploadFile
from fastapi.responses import JSONResponse
from loguru import logger

from fruitguard.config import FEEDBACK_CSV, FEEDBACK_IMG_DIR, NON_TOXIC, TOXIC, UNLABELED, default_store
from fruitguard.dataset import append_feedback
from fruitguard.errors import DecodeError, ModelUnavailable
from fruitguard.inference import InferenceEngine
from fruitguard.preprocessing import load_image_exif_safe

TOXICITY_LABELS = (TOXIC, NON_TOXIC, UNLABELED)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _unexpected(e: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error: {e}")
    return JSONResponse(
        status_code=500,
        content={"error": str(e), "trace": traceback.format_exc()},
    )


def create_app(
    engine: Optional[InferenceEngine] = None,
    feedback_dir: Optional[Path] = None,
    feedback_csv: Optional[Path] = None,
) -> FastAPI:
    engine = engine or InferenceEngine(default_store())
    feedback_dir = Path(feedback_dir or FEEDBACK_IMG_DIR)
    feedback_csv = Path(feedback_csv or (feedback_dir / FEEDBACK_CSV.name))

    app = FastAPI(title="FruitGuard API")
    app.state.engine = engine

    # ----------------------------
    # Health check
    # ----------------------------
    @app.get("/")
    def health():
        return {
            "status": "ok",
            "model_loaded": engine.is_ready(),
            "vocabulary": list(engine.vocabulary),
        }

    # ----------------------------
    # Prediction endpoint
    # ----------------------------
    @app.post("/predict")
    def predict(file: UploadFile = File(...)):
        image_bytes = file.file.read()
        if not image_bytes:
            return _error(400, "No file uploaded.")
        try:
            result = engine.predict(image_bytes)
        except DecodeError as e:
            return _error(400, str(e))
        except ModelUnavailable as e:
            return _error(503, f"Model not ready: {e}")
        except Exception as e:
            return _unexpected(e)
        return result.to_dict()

    # ----------------------------
    # Model reload (after an out-of-process retrain)
    # ----------------------------
    @app.post("/reload")
    def reload():
        try:
            model = engine.refresh()
        except ModelUnavailable as e:
            return _error(503, f"Model not ready: {e}")
        except Exception as e:
            return _unexpected(e)
        return {
            "status": "reloaded",
            "model_loaded": True,
            "version": model.metadata.get("version"),
        }

    # ----------------------------
    # Labeled upload (feedback) endpoint
    # ----------------------------
    @app.post("/feedback")
    async def feedback(
        file: UploadFile = File(...),
        fruit_type: str = Form(UNLABELED),
        toxicity: str = Form(UNLABELED),
    ):
        image_bytes = await file.read()
        if not image_bytes:
            return _error(400, "No file uploaded.")
        if fruit_type != UNLABELED and fruit_type not in engine.vocabulary:
            return _error(400, f"Unknown fruit type: {fruit_type}")
        if toxicity not in TOXICITY_LABELS:
            return _error(400, f"Toxicity must be one of {list(TOXICITY_LABELS)}")
        try:
            load_image_exif_safe(image_bytes)
        except DecodeError as e:
            return _error(400, str(e))

        try:
            suffix = Path(file.filename or "").suffix.lower() or ".jpg"
            filename = f"{hashlib.md5(image_bytes).hexdigest()}{suffix}"
            feedback_dir.mkdir(parents=True, exist_ok=True)
            (feedback_dir / filename).write_bytes(image_bytes)
            total = append_feedback(feedback_csv, filename, fruit_type, toxicity)
        except Exception as e:
            return _unexpected(e)

        logger.info(f"Feedback recorded: {filename} ({fruit_type}, {toxicity})")
        return {"status": "success", "filename": filename, "total_feedback": total}

    return app


app = create_app()
