from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from hirepath.core.config import SECRET_KEY, ALGORITHM
from hirepath.db.session import get_db
from hirepath.db.models.user import User
from hirepath.db.models.employer import Employer
from hirepath.db.models.candidate import Candidate

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user(token: str = Depends(oauth2_scheme)):
    """Get current user email from JWT token."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")

        if email is None:
            raise HTTPException(status_code=401, detail="Invalid token")

        return email

    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def get_current_user_obj(
    email: str = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> User:
    """Get current User object from JWT token."""
    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def get_current_employer(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
) -> Employer:
    """Employer account of the authenticated user; 403 for anyone else."""
    employer = db.query(Employer).filter(Employer.user_id == user.id).first()
    if user.user_type != "employer" or not employer:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Employer account required")
    return employer


def get_current_candidate(
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
) -> Candidate:
    """Candidate profile of the authenticated user; 403 for anyone else."""
    candidate = db.query(Candidate).filter(Candidate.user_id == user.id).first()
    if user.user_type != "candidate" or not candidate:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Candidate account required")
    return candidate
