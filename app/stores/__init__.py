from app.stores.interfaces import EventStore, RegistrationStore, UnitOfWork
from app.stores.memory_store import MemoryDatabase, MemoryUnitOfWork
from app.stores.sqlalchemy_store import SqlAlchemyUnitOfWork, sqlalchemy_unit_of_work_factory

__all__ = [
    "EventStore",
    "RegistrationStore",
    "UnitOfWork",
    "MemoryDatabase",
    "MemoryUnitOfWork",
    "SqlAlchemyUnitOfWork",
    "sqlalchemy_unit_of_work_factory",
]
