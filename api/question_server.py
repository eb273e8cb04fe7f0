"""
Question-generation HTTP service.

Endpoints:
- GET /health
- POST /api/generate-question

The workflow engine reaches this service through ``HttpQuestionGenerator``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from models.selector import ModelSelector
from questions.generator import QUESTION_ENDPOINT, ModelQuestionGenerator, QuestionGenerator
from shared.models import QuestionRequest, QuestionResponse

logger = logging.getLogger(__name__)

QUESTION_MODEL = os.getenv("QUESTION_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"


def create_app(generator: QuestionGenerator | None = None) -> FastAPI:
    """Build the service; without ``generator`` one is wired from the environment at startup."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        model_selector: ModelSelector | None = None
        if _app.state.generator is None:
            model_selector = ModelSelector()
            _app.state.generator = ModelQuestionGenerator(model_selector, model_name=QUESTION_MODEL)
        yield
        if model_selector is not None:
            model_selector.close()

    app = FastAPI(
        title="Workflow Question Service",
        version="0.1.0",
        description="Generates the question a user-interaction node asks.",
        lifespan=lifespan,
    )
    app.state.generator = generator

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(QUESTION_ENDPOINT, response_model=QuestionResponse)
    async def generate_question(request: QuestionRequest):
        question_generator: QuestionGenerator | None = app.state.generator
        if question_generator is None:
            logger.error("Question service has no generator configured")
            return JSONResponse(status_code=500, content={"error": "Failed to generate question"})
        try:
            question = await question_generator.generate_question(
                request.instruction,
                request.context,
                request.knowledge_base,
            )
        except Exception as exc:
            logger.error("Error generating question: %s", exc)
            return JSONResponse(status_code=500, content={"error": "Failed to generate question"})
        return QuestionResponse(question=question)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("QUESTION_SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("QUESTION_SERVER_PORT", "8003")),
    )
