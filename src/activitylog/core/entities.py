"""实体引用解析 -- 将 EntityRef 还原为实体对象

Dispatcher 在渲染前通过 EntityResolver 解析 subject/causer。
实体不存在或解析异常时返回 UNRESOLVED 哨兵，由格式化层降级为固定文案。
"""

import dataclasses
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

from .models.activity import EntityRef

log = structlog.get_logger()


class _Unresolved:
    """解析失败哨兵"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


UNRESOLVED = _Unresolved()

EntityLoader = Callable[[str], Any | Awaitable[Any]]


class EntityResolver(Protocol):
    """实体解析接口"""

    async def resolve(self, ref: EntityRef) -> Any | None:
        """返回实体对象，不存在时返回 None"""
        ...


class EntityRegistry:
    """按类型名注册 loader 的 EntityResolver 实现

    loader 接收实体 id，可为同步函数或协程函数。
    """

    def __init__(self) -> None:
        self._loaders: dict[str, EntityLoader] = {}

    def register(self, type_name: str, loader: EntityLoader) -> None:
        self._loaders[type_name] = loader

    async def resolve(self, ref: EntityRef) -> Any | None:
        loader = self._loaders.get(ref.type_name)
        if loader is None:
            return None
        result = loader(ref.id)
        if inspect.isawaitable(result):
            result = await result
        return result


async def resolve_entity(resolver: EntityResolver | None, ref: EntityRef | None) -> Any:
    """解析单个引用

    Returns:
        - ref 为 None: None
        - 未配置 resolver: None（渲染为 "{type_name} #{id}"）
        - 实体不存在或解析异常: UNRESOLVED
        - 否则返回实体对象
    """
    if ref is None or resolver is None:
        return None
    try:
        entity = await resolver.resolve(ref)
    except Exception as e:
        log.warning(
            "entity_resolve_failed",
            type_name=ref.type_name,
            entity_id=ref.id,
            error_type=type(e).__name__,
        )
        return UNRESOLVED
    return UNRESOLVED if entity is None else entity


def entity_attributes(entity: Any) -> dict[str, Any]:
    """提取实体属性字典（pydantic / dataclass / 普通对象）"""
    model_dump = getattr(entity, "model_dump", None)
    if callable(model_dump):
        return dict(model_dump())
    if dataclasses.is_dataclass(entity) and not isinstance(entity, type):
        return dataclasses.asdict(entity)
    try:
        return {k: v for k, v in vars(entity).items() if not k.startswith("_")}
    except TypeError:
        return {}
