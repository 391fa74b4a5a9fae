import pytest
import pytest_asyncio
from fakes import FAKE_OPENSCAD

from scad_agent.agent.codegen import CodeGenerationAgent
from scad_agent.agent.review import PreviewReviewAgent
from scad_agent.compiler.storage import FileStorage
from scad_agent.data.sqlite_store import SQLiteStore
from scad_agent.runners.feedback import RetryFeedbackRecorder
from scad_agent.runners.generation import GenerationRetryRunner
from scad_agent.workflows.model import ModelWorkflow


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = SQLiteStore(str(tmp_path / "test.db"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def storage(tmp_path):
    fs = FileStorage(tmp_path / "generated")
    fs.initialize()
    return fs


@pytest.fixture
def fake_openscad(tmp_path):
    path = tmp_path / "openscad"
    path.write_text(FAKE_OPENSCAD)
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def make_workflow(sqlite_store, storage):
    """Build a ModelWorkflow around fakes: ``make_workflow(client, compiler, max_attempts=2)``."""

    def _make(client, compiler, max_attempts=2):
        feedback = RetryFeedbackRecorder(sqlite_store)
        generation = GenerationRetryRunner(
            sqlite_store,
            CodeGenerationAgent(client),
            compiler,
            feedback,
            max_attempts=max_attempts,
        )
        return ModelWorkflow(
            sqlite_store,
            storage,
            compiler,
            generation,
            PreviewReviewAgent(client),
            feedback,
        )

    return _make
