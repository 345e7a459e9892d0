import os
from dataclasses import dataclass


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    api_prefix: str = os.getenv("API_PREFIX", "/api")
    environment: str = os.getenv("ENVIRONMENT", "development")
    # 生成服务凭证：优先 GEMINI_API_KEY，兼容旧的 API_KEY
    api_key: str = os.getenv("GEMINI_API_KEY", "") or os.getenv("API_KEY", "")
    # OpenAI 兼容端点，默认走 Gemini 的兼容层
    llm_base_url: str = os.getenv(
        "LLM_BASE_URL",
        "https://generativelanguage.googleapis.com/v1beta/openai/",
    )
    llm_model: str = os.getenv("LLM_MODEL", "gemini-3-pro-preview")
    # 按模式单独指定模型，为空则回落到 llm_model
    solve_model: str = os.getenv("SOLVE_MODEL", "")
    review_model: str = os.getenv("REVIEW_MODEL", "")
    summary_model: str = os.getenv("SUMMARY_MODEL", "")
    # 低温度：偏向确定性的提取，而非创造性发挥
    llm_temperature: float = float(os.getenv("LLM_TEMPERATURE", "0.1"))
    # 等待首个片段时轮换状态文案的间隔（秒）
    status_rotate_seconds: float = float(os.getenv("STATUS_ROTATE_SECONDS", "3"))
    # 完成提示的展示时长（秒），由前端负责关闭
    notice_seconds: float = float(os.getenv("NOTICE_SECONDS", "5"))
    max_upload_mb: int = int(os.getenv("MAX_UPLOAD_MB", "25"))
    product_name: str = os.getenv("PRODUCT_NAME", "UniSpace AI")
    export_attribution: str = os.getenv("EXPORT_ATTRIBUTION", "Generated by UniSpace AI")
    log_prompts: bool = _env_flag("LOG_PROMPTS")

    def model_for(self, mode: str) -> str:
        """按模式取模型名，未单独配置时使用 llm_model。"""
        per_mode = {
            "SOLVE": self.solve_model,
            "REVIEW": self.review_model,
            "SUMMARY": self.summary_model,
        }
        key = getattr(mode, "value", mode)
        return (per_mode.get(key) or "").strip() or self.llm_model


settings = Settings()
