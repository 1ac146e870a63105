from sqlmodel import SQLModel, create_engine

from relaybot.core.config import settings

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=settings.debug,
    connect_args={"check_same_thread": False},
)


def init_db() -> None:
    import relaybot.models.chat  # noqa: F401 - ensure models are registered
    import relaybot.models.crawl  # noqa: F401
    SQLModel.metadata.create_all(engine)
