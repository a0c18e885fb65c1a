"""
Architecture Simulation API

FastAPI application exposing design validation, batch simulation runs and
interactive simulation sessions.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

import archsim
from api.routers import health, sessions, simulation

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Architecture Simulation API",
    description="API for validating system designs and simulating their behavior under load and failure",
    version=archsim.__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when allow_origins is "*"
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(simulation.router)
app.include_router(sessions.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
