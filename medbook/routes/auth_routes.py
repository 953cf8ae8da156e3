from fastapi import APIRouter, Depends

from medbook.auth.dependencies import get_current_user, resolve_actor_role
from medbook.models.user import User

router = APIRouter(tags=['auth'])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    role = resolve_actor_role(current_user)
    return {
        "email": current_user.email,
        "role": role.value if role else None,
        "organizationId": current_user.organization_id,
    }
