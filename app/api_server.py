"""FastAPI entrypoint exposing the gift concierge recommendation and feedback APIs."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from gift_concierge.errors import OrchestratorFailure
from gift_concierge.service import GiftConciergeService


class RecommendRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    user_id: str = Field(default="anonymous", min_length=1)
    session_id: str = Field(default="", max_length=200)


class UserActionsPayload(BaseModel):
    viewed: list[str] = Field(default_factory=list)
    clicked: list[str] = Field(default_factory=list)
    liked: list[str] = Field(default_factory=list)
    dismissed: list[str] = Field(default_factory=list)
    purchased: list[str] = Field(default_factory=list)


class ExplicitFeedbackPayload(BaseModel):
    ratings: dict[str, float] = Field(default_factory=dict)
    comments: dict[str, str] = Field(default_factory=dict)


class FeedbackRequest(BaseModel):
    recommendation_id: str = Field(min_length=1)
    user_actions: UserActionsPayload = Field(default_factory=UserActionsPayload)
    explicit_feedback: ExplicitFeedbackPayload | None = None


load_dotenv(ROOT_DIR / ".env")

app = FastAPI(title="Gift Concierge", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:8005", "http://localhost:8005"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

service = GiftConciergeService.from_env(root_dir=ROOT_DIR)


@app.get("/api/health")
def health() -> dict:
    return {
        "status": "ok",
        "app": "gift-concierge",
        "stats": service.stats(),
    }


@app.post("/api/recommend")
def recommend(payload: RecommendRequest) -> dict:
    try:
        return service.recommend(query=payload.query, user_id=payload.user_id, session_id=payload.session_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OrchestratorFailure as exc:
        raise HTTPException(status_code=502, detail={"stage": exc.stage, "error": str(exc.cause)}) from exc


@app.get("/api/recommendations/{recommendation_id}")
def get_recommendation(recommendation_id: str) -> dict:
    try:
        return service.get_recommendation(recommendation_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/feedback")
def feedback(payload: FeedbackRequest) -> dict:
    try:
        return service.submit_feedback(
            recommendation_id=payload.recommendation_id,
            user_actions=payload.user_actions.model_dump(),
            explicit_feedback=payload.explicit_feedback.model_dump() if payload.explicit_feedback else None,
        )
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
