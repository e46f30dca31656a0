import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, create_ledger_engine, session_scope
from errors import DuplicateName
from models import Category

OWNER = "owner-a"


def make_factory():
    engine = create_ledger_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def category_names(factory) -> list[str]:
    with factory() as session:
        return session.scalars(select(Category.name).order_by(Category.name)).all()


def test_session_scope_commits_on_success() -> None:
    factory = make_factory()

    with session_scope(factory) as session:
        session.add(Category(user_id=OWNER, name="Food"))

    assert category_names(factory) == ["Food"]


def test_session_scope_rolls_back_store_errors_as_domain_errors() -> None:
    factory = make_factory()
    with session_scope(factory) as session:
        session.add(Category(user_id=OWNER, name="Food"))

    with pytest.raises(DuplicateName):
        with session_scope(factory) as session:
            session.add(Category(user_id=OWNER, name="Bills"))
            session.add(Category(user_id=OWNER, name="Food"))

    assert category_names(factory) == ["Food"]


def test_session_scope_rolls_back_on_any_exception() -> None:
    factory = make_factory()

    with pytest.raises(RuntimeError):
        with session_scope(factory) as session:
            session.add(Category(user_id=OWNER, name="Food"))
            session.flush()
            raise RuntimeError("script aborted")

    assert category_names(factory) == []
