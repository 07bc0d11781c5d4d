"""Main API router: aggregates all endpoint modules."""

from fastapi import APIRouter

from prompt_ops.api.cases import router as cases_router
from prompt_ops.api.metrics import router as metrics_router
from prompt_ops.api.prompts import router as prompts_router
from prompt_ops.api.results import router as results_router

api_router = APIRouter()

api_router.include_router(prompts_router, prefix="/prompts", tags=["prompts"])
api_router.include_router(cases_router, prefix="/test-cases", tags=["test-cases"])
api_router.include_router(results_router, prefix="/test-results", tags=["test-results"])
api_router.include_router(metrics_router, prefix="/metrics", tags=["metrics"])
