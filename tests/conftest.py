import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

import codejudge.models  # noqa: F401 (imported for side effects)
from codejudge.database import Base
from codejudge.sandbox import (
    ExecutionLimits,
    IsolationContext,
    Language,
    LanguageExecutor,
    SandboxExecutor,
    SandboxPool,
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class ScriptedContext(IsolationContext):
    def __init__(self, executor, limits):
        super().__init__(limits)
        self._executor = executor

    async def _setup(self):
        self._executor.opened.append(self)

    async def _run(self, code, stdin, *, entry_point):
        self._executor.calls.append((code, stdin, entry_point, self.limits))
        outcome = self._executor.script[stdin]
        if callable(outcome):
            outcome = await outcome()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def _release(self):
        self._executor.released.append(self)


class ScriptedExecutor(LanguageExecutor):
    """Maps each stdin to an output string, an exception, or a coroutine factory."""

    backend_name = "scripted"

    def __init__(self, script, language=Language.python):
        self.script = script
        self.language = language
        self.opened = []
        self.released = []
        self.calls = []

    def open_context(self, limits: ExecutionLimits) -> ScriptedContext:
        return ScriptedContext(self, limits)


@pytest.fixture
def scripted_sandbox():
    def _build(script, *, language=Language.python, pool_size=4):
        executor = ScriptedExecutor(script, language=language)
        sandbox = SandboxExecutor([executor], pool=SandboxPool(pool_size), runner="scripted")
        return sandbox, executor

    return _build


@pytest.fixture
async def db_session(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'codejudge.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()
