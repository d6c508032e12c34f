from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from app.database import get_db
from app.schemas.user import UserCreate, UserLogin
from app.schemas.common import ResponseModel
from app.services.auth_service import register_user, authenticate_user, create_tokens, user_to_dict
from app.services.notification_center import NotificationHub
from app.models.user import User
from app.api.deps import get_current_user, get_hub

router = APIRouter()


@router.post("/register", response_model=ResponseModel, status_code=status.HTTP_201_CREATED)
def register(user_data: UserCreate, db: Session = Depends(get_db)):
    """Register a new user"""
    user = register_user(db, user_data)
    tokens = create_tokens(user)
    return ResponseModel(
        success=True,
        data={"user": user_to_dict(user), "token": tokens["token"]},
        message="Registration successful"
    )


@router.post("/login", response_model=ResponseModel)
def login(credentials: UserLogin, db: Session = Depends(get_db)):
    """Login with email and password"""
    user = authenticate_user(db, email=str(credentials.email), password=credentials.password)
    tokens = create_tokens(user)
    return ResponseModel(
        success=True,
        data={"user": user_to_dict(user), "token": tokens["token"]},
        message="Login successful"
    )


@router.post("/logout", response_model=ResponseModel)
async def logout(
    current_user: User = Depends(get_current_user),
    hub: NotificationHub = Depends(get_hub),
):
    """Sign out: retract the user's live notification subscriptions."""
    hub.sign_out(str(current_user.id))
    return ResponseModel(success=True, message="Logged out")


@router.get("/me", response_model=ResponseModel)
async def me(current_user: User = Depends(get_current_user)):
    return ResponseModel(success=True, data=user_to_dict(current_user))
