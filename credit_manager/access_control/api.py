import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from credit_manager.database import get_db
from credit_manager.exceptions import AuthenticationError, ValidationError

from . import models, schemas
from .dependencies import auth_rate_guard, get_current_actor, get_request_context, sensitive_operation_guard
from .schemas import RequestContext
from .security import create_access_token
from .services import user_service

security_logger = logging.getLogger("credit_manager.security")

router = APIRouter(tags=["Authentication"])


def _token_response(user: models.User) -> dict:
    access_token = create_access_token(data={"sub": user.id, "username": user.username, "role": user.role.value})
    return {"access_token": access_token, "token_type": "bearer", "user": schemas.UserResponse.model_validate(user)}


@router.post("/register", response_model=schemas.TokenSchema, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(auth_rate_guard)])
def register(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    """
    Register a new staff user. Permission grants are derived from the role.
    """
    try:
        user = user_service.register_user(db, user_in)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return _token_response(user)


@router.post("/login", response_model=schemas.TokenSchema, dependencies=[Depends(auth_rate_guard)])
def login(db: Session = Depends(get_db), form_data: OAuth2PasswordRequestForm = Depends()):
    try:
        user = user_service.authenticate(db, form_data.username, form_data.password)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _token_response(user)


@router.post("/logout")
def logout(
    current_user: models.User = Depends(get_current_actor),
    context: RequestContext = Depends(get_request_context),
):
    # Tokens are stateless; the client discards its token and the event is logged
    security_logger.info(f"User logged out: {current_user.username} from {context.ip_address}")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=schemas.UserResponse)
async def read_me(current_user: models.User = Depends(get_current_actor)):
    return current_user


@router.put("/profile", response_model=schemas.UserResponse,
            dependencies=[Depends(sensitive_operation_guard(max_attempts=3))])
def update_profile(
    profile_in: schemas.UserProfileUpdate,
    current_user: models.User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        return user_service.update_profile(db, current_user, profile_in)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


@router.put("/change-password", dependencies=[Depends(sensitive_operation_guard(max_attempts=3))])
def change_password(
    change_in: schemas.PasswordChangeRequest,
    current_user: models.User = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        user_service.change_password(db, current_user, change_in)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return {"message": "Password changed successfully"}
