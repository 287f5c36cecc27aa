import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from gymledger.api.deps import CurrentUser, get_current_user, get_db
from gymledger.models import Role, User
from gymledger.schemas.auth import MeOut, RegisterIn, TokenOut, UserOut
from gymledger.services.auth import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


def _find_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(func.lower(User.email) == email.strip().lower()))


@router.post("/register", response_model=UserOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    if _find_by_email(db, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    # members only; owners and admins are promoted via assign_role
    member = User(
        email=payload.email.lower(),
        name=payload.name,
        mobile_number=payload.mobile_number,
        password_hash=hash_password(payload.password),
        role=Role.USER.value,
    )
    db.add(member)
    db.commit()
    db.refresh(member)
    logger.info("user_registered", extra={"extra": {"user_id": str(member.id)}})
    return member


@router.post("/login", response_model=TokenOut)
def login(form: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    user = _find_by_email(db, form.username)
    if user is None or not user.is_active or not verify_password(form.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    return TokenOut(access_token=create_access_token(subject=str(user.id), role=user.role))


@router.get("/me", response_model=MeOut)
def me(user: CurrentUser = Depends(get_current_user)):
    return MeOut(id=user.id, email=user.email, role=user.role)
