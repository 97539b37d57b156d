from fastapi import Depends, HTTPException, status
from gritsync.core.deps import get_current_user
from gritsync.models.user import User


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user
