"""
事务作用域 - 用async with包裹一组操作
正常退出提交，异常退出回滚并重新抛出原异常
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from .base import DataAdapter
from .helpers import error_message
from ..telemetry.logger import get_logger


logger = get_logger(__name__)


@asynccontextmanager
async def transaction(adapter: DataAdapter) -> AsyncIterator[DataAdapter]:
    """
    事务上下文

    Example:
        async with transaction(adapter) as tx:
            await tx.execute_query("SET ? ?", ["k", "v"])
    """
    await adapter.begin_transaction()
    try:
        yield adapter
    except BaseException:
        try:
            await adapter.rollback_transaction()
        except Exception as rollback_error:
            logger.error(
                f"Rollback failed on {adapter.database_type}: {error_message(rollback_error)}"
            )
        # 回滚失败只记录日志，抛出的始终是原异常
        raise
    else:
        await adapter.commit_transaction()
