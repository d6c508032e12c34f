from sqlalchemy.orm import Session
from fastapi import HTTPException, status
from app.models.user import User
from app.schemas.user import UserCreate
from app.services.identity import SessionIdentity
from app.utils.security import get_password_hash, verify_password, create_access_token


def register_user(db: Session, user_data: UserCreate) -> User:
    """Register a new user"""
    email = str(user_data.email).lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    if user_data.password != user_data.confirm_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Passwords do not match"
        )

    user = User(
        name=user_data.name,
        email=email,
        password_hash=get_password_hash(user_data.password),
        avatar_url=user_data.avatar_url,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def authenticate_user(db: Session, email: str, password: str) -> User:
    """Authenticate user and return user object"""
    user = db.query(User).filter(User.email == email.lower()).first()
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return user


def create_tokens(user: User) -> dict:
    """Create the access token for user"""
    return {"token": create_access_token(data={"sub": str(user.id), "email": user.email})}


def identity_for(user: User) -> SessionIdentity:
    return SessionIdentity(user_id=str(user.id), email=user.email, display_name=user.name)


def user_to_dict(user: User) -> dict:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "avatar_url": user.avatar_url,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
