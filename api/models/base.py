from api.database.base import Base  # noqa
