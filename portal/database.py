import logging

from sqlalchemy_utils import database_exists, create_database
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine.url import make_url

from portal.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def _use_immediate_transactions(engine):
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first write, so two sessions that read
    before writing dead-lock on the lock upgrade. Emitting BEGIN IMMEDIATE
    serialises them instead.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str):
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        sqlite_engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": settings.SQLITE_BUSY_TIMEOUT},
            echo=False
        )
        _use_immediate_transactions(sqlite_engine)
        return sqlite_engine
    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=False  # Set to True for SQL debugging
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def ensure_database_exists():
    """
    Checks if the database exists, and creates it if it does not.
    """
    if not database_exists(settings.DATABASE_URL):
        create_database(settings.DATABASE_URL)
        logger.info(f"Database created: {make_url(settings.DATABASE_URL).database}")


def seed_default_admin(db):
    """Create the configured admin account if it is missing."""
    from portal.auth.jwt import get_password_hash
    from portal.models.user import User, UserRole

    email = settings.DEFAULT_ADMIN_EMAIL.strip().lower()
    if not email or not settings.DEFAULT_ADMIN_PASSWORD:
        return None
    admin = db.query(User).filter(User.email == email).first()
    if admin:
        return admin
    admin = User(
        email=email,
        hashed_password=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
        name="System Administrator",
        role=UserRole.ADMIN.value,
        approved=True
    )
    db.add(admin)
    db.commit()
    logger.info(f"Default admin user created: {email}")
    return admin


def init_db():
    ensure_database_exists()
    import portal.models  # noqa: F401  registers every table on Base.metadata
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_default_admin(db)
    finally:
        db.close()


# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
