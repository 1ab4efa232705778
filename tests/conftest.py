"""
测试夹具 - 用假驱动替换真实驱动，测试无需数据库服务
"""

import pytest

from dbweave.adapters import mongodb_adapter, postgresql_adapter, redis_adapter
from dbweave.adapters.mongodb_adapter import MongoDBAdapter
from dbweave.adapters.postgresql_adapter import PostgreSQLAdapter
from dbweave.adapters.redis_adapter import RedisAdapter
from dbweave.config.connection import MongoDBConfig, PostgreSQLConfig, RedisConfig

from fakes import FakeMongoServer, FakePgServer, FakeRedisServer


@pytest.fixture
def pg_server(monkeypatch):
    server = FakePgServer()
    monkeypatch.setattr(postgresql_adapter.asyncpg, "create_pool", server.create_pool)
    return server


@pytest.fixture
def redis_server(monkeypatch):
    server = FakeRedisServer()
    monkeypatch.setattr(redis_adapter, "Redis", server.client_class())
    return server


@pytest.fixture
def mongo_server(monkeypatch):
    server = FakeMongoServer()
    monkeypatch.setattr(mongodb_adapter, "AsyncIOMotorClient", server.client_class())
    return server


@pytest.fixture
def pg_adapter(pg_server):
    return PostgreSQLAdapter(PostgreSQLConfig(host="db.internal", database="app", password="secret"))


@pytest.fixture
def redis_adapter_instance(redis_server):
    return RedisAdapter(RedisConfig(host="cache.internal", db=2))


@pytest.fixture
def mongo_adapter(mongo_server):
    return MongoDBAdapter(MongoDBConfig(host="docs.internal", database="shop"))


@pytest.fixture(params=["postgresql", "redis", "mongodb"])
def any_adapter(request, pg_server, redis_server, mongo_server):
    """三种后端各跑一遍的通用契约测试"""
    if request.param == "postgresql":
        return PostgreSQLAdapter(PostgreSQLConfig())
    if request.param == "redis":
        return RedisAdapter(RedisConfig())
    return MongoDBAdapter(MongoDBConfig())
