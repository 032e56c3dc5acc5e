"""会话客户端设置 Pydantic 校验模型

GameClient 与扫描循环的设置在此集中校验：
  - 设置模型与协议 dataclass 分离 (校验层 vs 编码层)
  - 校验失败抛出 pydantic.ValidationError，由调用方 (CLI) 统一处理
  - 使用 model_config = ConfigDict(extra="forbid") 拒绝未知字段
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .objects import GameOptions, Languages, MainServer, MapFlags

# 房间内用户名长度上限
GAME_USERNAME_MAX = 12
# 可选颜色数
COLOR_COUNT = 12
# 每次房间列表请求返回的条数
LISTINGS_PER_REQUEST = 10


class ClientSettings(BaseModel):
    """加入房间时的客户端设置"""

    model_config = ConfigDict(extra="forbid")

    # 连接服务器时使用的用户名 (服务器会检查)
    connect_username: str = Field(default="client", min_length=1)
    # 房间内显示的用户名 (不检查，12 字符上限)
    game_username: str = Field(default="client", min_length=1, max_length=GAME_USERNAME_MAX)
    initial_color: int = Field(default=0, ge=0, lt=COLOR_COUNT)
    initial_skin: int = Field(default=0, ge=0)
    initial_hat: int = Field(default=0, ge=0)
    initial_pet: int = Field(default=0, ge=0)
    # Tutorial 会让房主不再检查场景，破坏正常对局
    game_scene: Literal["OnlineGame", "Tutorial"] = "OnlineGame"
    # 不发送场景时角色不会出现，房主也不会下发初始数据
    send_scene: bool = True
    send_initial_info: bool = True


class ScanSettings(BaseModel):
    """房间列表扫描设置"""

    model_config = ConfigDict(extra="forbid")

    server: MainServer = MainServer.EUROPE
    connect_username: str = Field(default="client", min_length=1)
    maps: int = Field(default=int(MapFlags.ALL), ge=0, le=int(MapFlags.ALL))
    language: Languages = Languages.ALL
    # 0 表示任意
    num_imposters: int = Field(default=0, ge=0, le=3)
    max_requests: int = Field(default=10, ge=1)
    cache_size: int = Field(default=200, ge=0)

    @field_validator("server", mode="before")
    @classmethod
    def server_by_name(cls, v):
        if isinstance(v, str) and v.upper() in MainServer.__members__:
            return MainServer[v.upper()]
        return v

    def game_options(self) -> GameOptions:
        """查询房间列表时发送的过滤条件"""
        return GameOptions(
            language=self.language,
            map_id=self.maps,
            num_imposters=self.num_imposters,
        )

    def requests_to_make(self, outstanding: int, cached: int, sent_total: int = 0) -> int:
        """按缓存目标计算还需发送的请求数

        outstanding 为尚未收到回复的请求数，每个请求预计带回 10 条；
        结果向上取整，并受剩余请求预算限制
        """
        budget = self.max_requests - sent_total
        if budget <= 0:
            return 0
        wanted = self.cache_size - (outstanding * LISTINGS_PER_REQUEST + cached)
        if wanted <= 0:
            return 0
        return min(-(-wanted // LISTINGS_PER_REQUEST), budget)
