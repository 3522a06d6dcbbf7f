from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Import models to register tables
from .users import User  # noqa: F401,E402
from .stories import Story  # noqa: F401,E402
