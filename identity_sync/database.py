from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from identity_sync.config import IDENTITY_DATABASE_URL, RECORDS_DATABASE_URL


class Base(DeclarativeBase):
	pass


def make_engine(url: str) -> Engine:
	"""Create an engine; sqlite connections are shared with the worker threads."""
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	return create_engine(url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


# The identity directory and the record store are owned independently; each
# gets its own engine even when both point at the same database.
identity_engine = make_engine(IDENTITY_DATABASE_URL)
IdentitySessionLocal = make_session_factory(identity_engine)

records_engine = make_engine(RECORDS_DATABASE_URL)
RecordsSessionLocal = make_session_factory(records_engine)
