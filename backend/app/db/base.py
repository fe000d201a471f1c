from sqlalchemy import BigInteger, Integer
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# BIGINT en Postgres, INTEGER en SQLite (sinon pas d'autoincrement rowid)
BigIntPK = BigInteger().with_variant(Integer, "sqlite")
