import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import embed
from core.config import ALLOWED_CORS_ORIGINS, LOG_LEVEL

# Configure logging with environment variable support
# Set LOG_LEVEL=WARNING in production to reduce noise, DEBUG for verbose output
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


tags_metadata = [
    {
        "name": "embed",
        "description": (
            "Embedded map sessions: configuration loading, layer chooser, "
            "feature info panel and icon provisioning."
        ),
    },
]


app = FastAPI(
    title="MapVibe API",
    description="Layer and interaction controller for configuration-driven embedded maps",
    version="0.1.0",
    openapi_tags=tags_metadata,
)

# CORS
if ALLOWED_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # Fallback: allow all origins, credentials off (wildcard origin forbids them)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routers
app.include_router(embed.router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "MapVibe API is running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "MapVibe API is running"}


# Exception handlers


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_422(request: Request, exc: RequestValidationError):
    exc_str = f"{exc}".replace("\n", " ").replace("   ", " ")
    logging.error(f"{request}: {exc_str}")
    content = {"status_code": 10422, "message": exc_str, "data": None}
    return JSONResponse(content=content, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
