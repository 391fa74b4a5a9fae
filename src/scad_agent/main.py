import logging
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

import uvicorn
from fastapi import FastAPI, Request

from .agent.client import ClaudeCompletionClient
from .agent.codegen import CodeGenerationAgent
from .agent.review import PreviewReviewAgent
from .api.routes import router
from .compiler.openscad import OpenSCADCompiler
from .compiler.storage import FileStorage
from .config import (
    DATA_DIR,
    FILE_MAX_AGE_HOURS,
    GENERATED_DIR,
    HOST,
    LOG_FILE,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_LEVEL,
    MAX_COMPILE_RETRIES,
    PORT,
    ROOT_PATH,
    SQLITE_PATH,
)
from .data.sqlite_store import SQLiteStore
from .runners.feedback import RetryFeedbackRecorder
from .runners.generation import GenerationRetryRunner
from .workflows.model import ModelWorkflow

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
if LOG_FILE:
    file_handler = RotatingFileHandler(
        LOG_FILE, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    DATA_DIR.mkdir(parents=True, exist_ok=True)

    logger.info("Initializing file storage...")
    storage = FileStorage(GENERATED_DIR)
    storage.initialize()
    storage.cleanup_old_files(FILE_MAX_AGE_HOURS * 3600)

    compiler = OpenSCADCompiler(storage)
    if not await compiler.check_installation():
        logger.warning("OpenSCAD is not available; every compile will fail")

    logger.info("Initializing SQLite store...")
    sqlite_store = SQLiteStore(str(SQLITE_PATH))
    await sqlite_store.initialize()

    logger.info("Initializing model workflow...")
    client = ClaudeCompletionClient()
    feedback = RetryFeedbackRecorder(sqlite_store)
    generation = GenerationRetryRunner(
        sqlite_store,
        CodeGenerationAgent(client),
        compiler,
        feedback,
        max_attempts=MAX_COMPILE_RETRIES,
    )
    model_workflow = ModelWorkflow(
        sqlite_store,
        storage,
        compiler,
        generation,
        PreviewReviewAgent(client),
        feedback,
    )

    app.state.sqlite_store = sqlite_store
    app.state.model_workflow = model_workflow

    logger.info("Startup complete — ready to serve")
    yield

    # Shutdown
    logger.info("Shutting down...")
    await sqlite_store.close()


app = FastAPI(title="OpenSCAD Model Agent", root_path=ROOT_PATH, lifespan=lifespan)
app.include_router(router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    t0 = time.time()
    response = await call_next(request)
    logger.info(
        "%s %s -> %d (%dms)",
        request.method,
        request.url.path,
        response.status_code,
        round((time.time() - t0) * 1000),
    )
    return response


def run() -> None:
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
