import os
from typing import Any, Dict, List, Optional

import yaml

from pydantic_settings import BaseSettings, SettingsConfigDict

from crawlbox.utils.env_loader import load_environment


DEFAULT_USER_AGENT = "CrawlboxBot/1.0"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "../config/config.yaml")

# keys of the `crawler:` section that do not follow the `<section>_<key>` rule
_CRAWLER_KEYS = {
    "user_agent": "crawler_user_agent",
    "crawl_delay": "crawl_delay_default",
    "timeout": "request_timeout",
}


class Config(BaseSettings):
    # crawler
    crawler_user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0
    viewport_width: int = 1920
    viewport_height: int = 1080
    respect_robots_txt: bool = True
    follow_links: bool = True
    max_depth: int = 3
    max_pages: int = 100
    crawl_delay_default: float = 1.0
    proxy: Optional[str] = None
    browser_backend: str = "playwright"
    seed_urls: str = ""

    # result cache
    cache_max_size: int = 1000
    cache_ttl: float = 24 * 60 * 60
    cache_check_interval: float = 60 * 60

    # resource monitor
    monitor_interval: float = 5.0
    monitor_max_memory: int = 2 * 1024 * 1024 * 1024
    monitor_max_cpu: float = 80.0
    monitor_max_network: int = 10 * 1024 * 1024

    # sandbox
    sandbox_dir: str = "data/sandbox"
    sandbox_timeout: float = 60.0
    sandbox_isolated: bool = True
    sandbox_max_memory: int = 512 * 1024 * 1024
    sandbox_max_cpu: float = 50.0
    sandbox_max_network: int = 10 * 1024 * 1024
    sandbox_enforce_limits: bool = False
    sandbox_metrics_interval: float = 1.0

    # compliance
    compliance_default_action: str = "allow"
    compliance_load_default_rules: bool = True
    compliance_rules: List[Dict[str, Any]] = []

    # storage
    mongo_url: Optional[str] = None
    mongo_db: Optional[str] = None
    storage_dir: Optional[str] = None

    metrics_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_path: Optional[str] = "data/logs/crawlbox.log"

    def seed_url_list(self) -> List[str]:
        return [url.strip() for url in self.seed_urls.split(",") if url.strip()]


def _load_yaml_config() -> Dict[str, Any]:
    config_path = os.getenv("CRAWLBOX_CONFIG") or DEFAULT_CONFIG_PATH
    if not os.path.exists(config_path):
        return {}

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _flatten(file_data: Dict[str, Any]) -> Dict[str, Any]:
    """Turn `section: {key: value}` YAML into flat `Config` field names."""
    flat: Dict[str, Any] = {}
    for section, values in file_data.items():
        if not isinstance(values, dict):
            flat[section] = values
            continue
        for key, value in values.items():
            if section == "crawler":
                flat[_CRAWLER_KEYS.get(key, key)] = value
            elif section == "storage" and key.startswith("mongo_"):
                flat[key] = value
            else:
                flat[f"{section}_{key}"] = value
    return flat


def load_config() -> Config:
    load_environment()
    file_settings = _flatten(_load_yaml_config())

    # environment wins over the config file; BaseSettings reads it itself
    overrides = {
        key: value
        for key, value in file_settings.items()
        if key in Config.model_fields and os.getenv(key.upper()) is None
    }

    # Mongo URI precedence: MONGO_URI -> MONGO_URL -> config file
    mongo_url = os.getenv("MONGO_URI") or os.getenv("MONGO_URL")
    if mongo_url:
        overrides["mongo_url"] = mongo_url

    return Config(**overrides)


def get_crawler_user_agent() -> str:
    """Return the configured crawler user-agent string."""
    config = load_config()
    return config.crawler_user_agent
