"""Embed 渲染模型 -- webhook 接收端的结构化消息

所有文本字段在构建时已按 FormatLimits 截断。
"""

from pydantic import BaseModel, Field


class EmbedField(BaseModel):
    name: str
    value: str
    inline: bool = False


class EmbedFooter(BaseModel):
    text: str


class Embed(BaseModel):
    """单条 embed"""

    title: str
    description: str = ""
    color: int = Field(ge=0, le=0xFFFFFF)
    timestamp: str | None = Field(default=None, description="ISO-8601 时间戳")
    fields: list[EmbedField] = Field(default_factory=list)
    footer: EmbedFooter | None = None

    def field(self, name: str) -> EmbedField | None:
        """按名称查找字段"""
        for item in self.fields:
            if item.name == name:
                return item
        return None
