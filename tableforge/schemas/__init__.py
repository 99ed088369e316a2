from tableforge.schemas.entities import *  # noqa: F401,F403
