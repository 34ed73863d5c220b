"""
FastAPI service exposing the RemoteEvaluator.

Endpoints:
- GET  /health   - Service status and evaluation count
- POST /evaluate - Evaluate one base64-encoded compute bundle

The service only ever handles ciphertext bytes and public parameters.
"""
import base64
import binascii
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from blindmatch.server.compute import RemoteEvaluator
from blindmatch.shared.errors import CryptoFailure, ProtocolError
from blindmatch.shared.utils import Timer


class EvaluateRequest(BaseModel):
    """Compute bundle sent by a search client."""
    bundle_b64: str = Field(..., description="Base64-encoded compute bundle")


class EvaluateResponse(BaseModel):
    """Encrypted difference returned to the client."""
    result_b64: str = Field(..., description="Base64-encoded result buffer")
    server_time_ms: float


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    evaluations: int
    cached_contexts: int


class ServerState:
    """Server state container."""
    def __init__(self):
        self.evaluator: Optional[RemoteEvaluator] = None


state = ServerState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create an evaluator on startup if none was installed."""
    if state.evaluator is None:
        state.evaluator = RemoteEvaluator()
    print("Evaluator ready")
    yield
    print("Evaluator shutting down...")


app = FastAPI(
    title="blindmatch evaluator",
    description="Untrusted homomorphic evaluator for encrypted word search",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    evaluator = state.evaluator
    return HealthResponse(
        status="healthy" if evaluator is not None else "uninitialized",
        evaluations=evaluator.evaluations if evaluator else 0,
        cached_contexts=evaluator.cached_contexts if evaluator else 0,
    )


@app.post("/evaluate", response_model=EvaluateResponse)
def evaluate(request: EvaluateRequest):
    """
    Compute batch - query on encrypted data.

    Runs in the threadpool since homomorphic evaluation is CPU-bound.
    """
    if state.evaluator is None:
        raise HTTPException(status_code=500, detail="Evaluator not initialized")

    try:
        bundle = base64.b64decode(request.bundle_b64, validate=True)
    except binascii.Error as e:
        raise HTTPException(status_code=400, detail=f"Bundle is not valid base64: {e}")

    with Timer() as t:
        try:
            result = state.evaluator.evaluate(bundle)
        except ProtocolError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CryptoFailure as e:
            raise HTTPException(status_code=422, detail=str(e))

    return EvaluateResponse(
        result_b64=base64.b64encode(result).decode("ascii"),
        server_time_ms=t.elapsed_ms,
    )


def create_app(evaluator: Optional[RemoteEvaluator] = None) -> FastAPI:
    """
    Configure the app with a fresh (or given) evaluator.

    For programmatic use in tests and demos.
    """
    state.evaluator = evaluator or RemoteEvaluator()
    return app


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the server directly."""
    import uvicorn
    create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
