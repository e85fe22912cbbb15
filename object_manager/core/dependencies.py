# object_manager/core/dependencies.py
"""FastAPI dependencies for sessions and object managers."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from object_manager.core.database import get_db, get_object_manager
from object_manager.manager import ObjectManager

SessionDep = Annotated[Session, Depends(get_db)]
ObjectManagerDep = Annotated[ObjectManager, Depends(get_object_manager)]
