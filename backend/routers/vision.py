"""
Vision Router

GET /api/models  — vision models available for receipt parsing
"""
from fastapi import APIRouter

from models.schemas import VisionModel
from services.vision_service import get_models

router = APIRouter()


@router.get("", response_model=list[VisionModel])
async def list_models():
    return get_models()
