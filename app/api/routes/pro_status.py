from fastapi import APIRouter, Depends

from app.core.security import require_user_id
from app.domain.schemas import ProStatusResponse
from app.services.pro_status_client import load_pro_status

router = APIRouter()


@router.get("/me", response_model=ProStatusResponse)
def get_my_pro_status(user_id: str = Depends(require_user_id)):
    """Get the current user's effective Pro status, plan tier and countdown."""
    return load_pro_status(user_id)
