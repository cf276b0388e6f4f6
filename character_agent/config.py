from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 协调网络各环境的后端地址
NVM_BACKENDS: dict[str, str] = {
    "staging": "https://one-backend.staging.nevermined.app",
    "production": "https://one-backend.nevermined.app",
    "local": "http://localhost:3001",
}


class Settings(BaseSettings):
    # Note: do not hardcode env_file here; tests instantiate Settings() directly and
    # should not implicitly read the repo's .env. Runtime uses get_settings().
    model_config = SettingsConfigDict(extra="ignore")

    app_name: str = "character-extraction-agent"
    log_level: str = Field(default="INFO", description="Root log level")

    # ============================================
    # 任务协调网络（Step Store）
    # ============================================
    nvm_environment: str = Field(default="staging", description="staging|production|local")
    nvm_api_key: str | None = None
    nvm_backend_url: str | None = Field(
        default=None,
        description="覆盖 nvm_environment 对应的后端地址",
    )
    nvm_websocket_url: str | None = Field(
        default=None,
        description="覆盖事件订阅地址（默认由后端地址推导）",
    )
    agent_did: str | None = None

    # ============================================
    # LLM 服务 (Anthropic Messages API)
    # ============================================
    anthropic_api_key: str | None = None
    anthropic_auth_token: str | None = Field(
        default=None,
        description="中转站 Token",
    )
    anthropic_base_url: str | None = None
    anthropic_model: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Claude 模型名称",
    )
    llm_max_tokens: int = 4096
    llm_max_retries: int = Field(
        default=0,
        description="LLM 调用的传输层重试次数；默认不重试",
    )

    request_timeout_s: float = 120.0
    extraction_timeout_s: float | None = Field(
        default=None,
        description="角色提取整体超时（秒）；不设置则不限制",
    )

    def backend_url(self) -> str:
        if self.nvm_backend_url:
            return self.nvm_backend_url.rstrip("/")
        try:
            return NVM_BACKENDS[self.nvm_environment]
        except KeyError as exc:
            raise ValueError(f"Unknown nvm_environment: {self.nvm_environment}") from exc

    def websocket_url(self) -> str:
        """事件订阅地址：http(s) -> ws(s)"""
        if self.nvm_websocket_url:
            return self.nvm_websocket_url
        base = self.backend_url()
        if base.startswith("https://"):
            return "wss://" + base[len("https://") :] + "/events"
        if base.startswith("http://"):
            return "ws://" + base[len("http://") :] + "/events"
        return base + "/events"

    def nvm_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"User-Agent": self.app_name}
        if self.nvm_api_key:
            headers["Authorization"] = f"Bearer {self.nvm_api_key}"
        return headers

    def missing_runtime_settings(self) -> list[str]:
        """返回启动 Agent 所缺少的配置项（环境变量名）"""
        missing: list[str] = []
        if not self.nvm_api_key:
            missing.append("NVM_API_KEY")
        if not self.agent_did:
            missing.append("AGENT_DID")
        if not (self.anthropic_api_key or self.anthropic_auth_token):
            missing.append("ANTHROPIC_API_KEY")
        if not self.nvm_backend_url and self.nvm_environment not in NVM_BACKENDS:
            missing.append("NVM_ENVIRONMENT")
        return missing


@lru_cache
def get_settings() -> Settings:
    return Settings(_env_file=".env", _env_file_encoding="utf-8")
