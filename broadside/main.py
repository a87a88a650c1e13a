import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
import sys

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
import uvicorn

# Resolve project root (two levels up from this file: broadside/main.py -> project root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
# Ensure project root on sys.path so `import broadside.*` works when running as a script
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
STATIC_DIR = PROJECT_ROOT / "static"

from broadside.routers.game_router import router as game_router  # noqa: E402
from broadside.schemas import Config  # noqa: E402
from broadside.services.session import GameSession  # noqa: E402


async def _ticker(session: GameSession, interval_sec: float) -> None:
    while True:
        session.tick()
        await asyncio.sleep(interval_sec)


def create_app(config: Config | None = None, session: GameSession | None = None) -> FastAPI:
    config = config or Config.from_env()
    session = session or GameSession(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(_ticker(session, config.tick_interval_ms / 1000.0))
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    app = FastAPI(lifespan=lifespan)
    app.state.session = session

    # Mount static files at /static (rendering client lives outside this repo)
    if STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR), html=False), name="static")

        @app.get("/")
        def read_index():
            return FileResponse(str(STATIC_DIR / "index.html"))

    # Health check
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    app.include_router(game_router, prefix="/v1/game", tags=["game"])
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("BROADSIDE_HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
