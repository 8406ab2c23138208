import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import validate_config
from .routes.analysis import router as analysis_router


# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):

    # Startup
    print("Starting Idea Viability Research Pipeline")
    print(f"   OpenAI Key:   {' Configured' if os.getenv('OPENAI_API_KEY') else ' Not set'}")
    print(f"   Tavily Key:   {' Configured' if os.getenv('TAVILY_API_KEY') else ' Not set'}")
    print(f"   OKR document: {os.getenv('OKR_DOCUMENT_PATH') or ' Not set (OKR branch will degrade)'}")
    for problem in validate_config():
        print(f"   ⚠️  {problem}")
    print("   Ready to analyse ideas!")

    yield

    print("Shutting down Idea Viability Research Pipeline")


app = FastAPI(
    title="Idea Viability Research Pipeline",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",      # Next.js dev server
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis_router)


@app.get(
    "/",
    summary="API Root",
    description="Welcome endpoint with API information",
    tags=["General"]
)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Idea Viability Research Pipeline",
        "version": "0.1.0",
        "description": "Multi-source research and viability scoring for product ideas",
        "docs": "/docs",
        "endpoints": {
            "analysis": "POST /analysis - Run a comprehensive analysis",
            "viability": "POST /analysis/viability - Score insights",
            "okr_cache": "DELETE /analysis/okr-cache - Clear the OKR document cache",
            "health": "GET /analysis/health - Service health check"
        }
    }


@app.get(
    "/health",
    summary="Global Health Check",
    description="Check if the API server is running",
    tags=["General"]
)
async def health():
    """Global health check endpoint."""
    return {
        "status": "healthy",
        "service": "idea-viability",
        "version": "0.1.0"
    }


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc) if os.getenv("DEBUG", "false").lower() == "true" else "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "idea_viability.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "true").lower() == "true",
    )
