import asyncio
from dataclasses import replace
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from podsweeper.config import Settings
from podsweeper.errors import CreationError, ValidationError
from podsweeper.game_engine import GameStatus
from podsweeper.grid import DIFFICULTY_PRESETS, Generator, difficulty_config
from podsweeper.materializer import GridMaterializer
from podsweeper.persistence import FirestoreStore, InMemoryStore
from podsweeper.reconciler import Dispatcher, Reconciler, ResourceEvent
from podsweeper.resources import InMemoryResourceManager

load_dotenv(dotenv_path=Path('.env.local'))

API_BASE = "/api/podsweeper"


def choose_store(settings: Settings):
    if settings.use_inmemory:
        return InMemoryStore()
    try:
        return FirestoreStore(collection=settings.state_collection, document=settings.state_document)
    except Exception:
        # Fallback to in-memory if firestore client not available
        return InMemoryStore()


class StartBody(BaseModel):
    size: Optional[int] = Field(None, ge=1, le=100)
    seed: Optional[int] = None
    density: Optional[float] = Field(None, ge=0.05, le=0.50)
    difficulty: Optional[str] = None
    level: int = Field(0, ge=0)


class EventBody(BaseModel):
    name: str
    namespace: Optional[str] = None
    wait: bool = False


def create_app(store=None, resources=None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title="PodSweeper Gamemaster", version="0.1.0")
    logger = logging.getLogger("uvicorn.error")

    app.state.settings = settings
    app.state.store = store or choose_store(settings)
    app.state.resources = resources or InMemoryResourceManager(settings.namespace)
    app.state.materializer = GridMaterializer(
        app.state.resources,
        batch_size=settings.batch_size,
        retry_attempts=settings.retry_attempts,
        retry_delay=settings.retry_delay,
    )
    app.state.reconciler = Reconciler(app.state.store, app.state.resources, app.state.materializer)
    app.state.dispatcher = None

    @app.on_event("startup")
    async def _start_dispatcher():
        app.state.dispatcher = Dispatcher(app.state.reconciler)
        app.state.dispatcher.start()
        klass = app.state.store.__class__.__name__
        logger.info(
            f"[podsweeper] Store={klass} namespace={settings.namespace} USE_INMEMORY={int(settings.use_inmemory)} "
            f"GOOGLE_CLOUD_PROJECT={settings.project or '-'}"
        )

    @app.on_event("shutdown")
    async def _stop_dispatcher():
        if app.state.dispatcher is not None:
            await app.state.dispatcher.stop()

    def load_state():
        return asyncio.to_thread(app.state.store.load)

    @app.post(f"{API_BASE}/start")
    async def start_game(body: StartBody):
        existing = await load_state()
        if existing is not None and existing.status == GameStatus.PLAYING:
            raise HTTPException(status_code=409, detail="active game exists")

        if body.difficulty:
            if body.difficulty not in DIFFICULTY_PRESETS:
                raise HTTPException(status_code=400, detail=f"unknown difficulty: {body.difficulty}")
            config = difficulty_config(body.difficulty)
        else:
            config = settings.grid_config()
        overrides = {}
        if body.size is not None:
            overrides["size"] = body.size
        if body.density is not None:
            overrides["mine_density"] = body.density
        try:
            gen = Generator(replace(config, seed=body.seed or 0, **overrides))
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        state = gen.generate()
        seed = gen.config.seed
        state.level = body.level

        if existing is not None:
            await app.state.materializer.cleanup_grid()
        await asyncio.to_thread(app.state.store.save, state)

        try:
            result = await app.state.materializer.spawn_grid(state)
        except CreationError as e:
            result = e.result
            logger.warning(f"[podsweeper] spawn incomplete failed={result.failed} coords={result.failed_coords}")
        logger.info(f"[podsweeper] game started size={state.size} seed={seed} mines={state.mine_count}")
        return state.stats() | {
            "seed": seed,
            "spawn": {
                "total": result.total,
                "created": result.created,
                "failed": result.failed,
                "failed_coords": [{"x": c.x, "y": c.y} for c in result.failed_coords],
            },
        }

    @app.get(f"{API_BASE}/state")
    async def get_state():
        state = await load_state()
        if state is None:
            raise HTTPException(status_code=404, detail="no game")
        return state.stats() | {"seed": state.seed}

    @app.post(f"{API_BASE}/reset")
    async def reset():
        await app.state.materializer.cleanup_grid()
        await asyncio.to_thread(app.state.store.delete)
        logger.info("[podsweeper] game reset")
        return {"status": "reset"}

    @app.post(f"{API_BASE}/events", status_code=202)
    async def submit_event(body: EventBody):
        if app.state.dispatcher is None:
            raise HTTPException(status_code=503, detail="dispatcher not running")
        event = ResourceEvent(name=body.name, namespace=body.namespace or settings.namespace)
        app.state.dispatcher.submit(event)
        if body.wait:
            await app.state.dispatcher.drain()
        return {"accepted": True, "name": event.name}

    return app


app = create_app()
