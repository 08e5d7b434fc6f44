"""
跨方言的 SQL 辅助函数
"""
from typing import Any, Dict, Type

from sqlalchemy import insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_if_absent(
    session: AsyncSession,
    model: Type[Any],
    values: Dict[str, Any],
) -> bool:
    """
    INSERT ... ON CONFLICT DO NOTHING

    返回是否真正插入了一行。主键冲突不会抛出异常，也不会中断当前事务。
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect in ("mysql", "mariadb"):
        stmt = insert(model).values(**values).prefix_with("IGNORE")
    else:
        raise NotImplementedError(f"insert_if_absent is not supported on {dialect}")
    result = await session.execute(stmt)
    return result.rowcount == 1
