import asyncio
import signal
from typing import Optional

from loguru import logger

# -------------------------------
# UVLOOP (used when installed)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from crawlbox.browser.http_browser import HttpBrowser
from crawlbox.cache.result_cache import ResultCache
from crawlbox.compliance.legal_filter import LegalComplianceFilter, rule_from_dict
from crawlbox.engine import CrawlOrchestrator
from crawlbox.events import EventBus
from crawlbox.models import CrawlerOptions, ResourceLimits, SandboxConfig
from crawlbox.monitoring.metrics_server import start_metrics_server
from crawlbox.monitoring.resource_monitor import ResourceMonitor
from crawlbox.sandbox.executor import SandboxExecutor
from crawlbox.session.session_manager import SessionManager
from crawlbox.storage.mongo_storage_manager import MongoStorageManager
from crawlbox.storage.storage_adapter import StorageAdapter
from crawlbox.utils.config_loader import Config, load_config
from crawlbox.utils.logger import setup_logger


def build_browser(config: Config):
    if config.browser_backend == "http":
        return HttpBrowser(proxy=config.proxy)
    if config.browser_backend == "playwright":
        from crawlbox.browser.playwright_browser import PlaywrightBrowser

        return PlaywrightBrowser(proxy=config.proxy)
    raise ValueError(f"Unknown browser backend: {config.browser_backend}")


class Application:
    """Owns one instance of every component and their start/close order."""

    def __init__(self, config: Config, *, browser=None):
        self.config = config
        self.events = EventBus()

        self.monitor = ResourceMonitor(
            ResourceLimits(
                max_memory=config.monitor_max_memory,
                max_cpu=config.monitor_max_cpu,
                max_network=config.monitor_max_network,
            ),
            interval=config.monitor_interval,
            events=self.events,
        )
        self.cache = ResultCache(
            max_size=config.cache_max_size,
            ttl=config.cache_ttl,
            check_interval=config.cache_check_interval,
        )
        self.compliance = LegalComplianceFilter(
            self.events,
            rules=[rule_from_dict(rule) for rule in config.compliance_rules],
            load_default_rules=config.compliance_load_default_rules,
            default_action=config.compliance_default_action,
        )
        self.sessions = SessionManager(self.events)

        mongo = MongoStorageManager(config.mongo_url, db_name=config.mongo_db) if config.mongo_url else None
        self.storage = StorageAdapter(mongo=mongo, file_dir=config.storage_dir)

        self.orchestrator = CrawlOrchestrator(
            CrawlerOptions.from_config(config),
            browser or build_browser(config),
            cache=self.cache,
            compliance=self.compliance,
            storage=self.storage,
            sessions=self.sessions,
            events=self.events,
        )
        self.sandbox = SandboxExecutor(
            self.monitor,
            SandboxConfig(
                working_dir=config.sandbox_dir,
                isolated=config.sandbox_isolated,
                timeout=config.sandbox_timeout,
                resource_limits=ResourceLimits(
                    max_memory=config.sandbox_max_memory,
                    max_cpu=config.sandbox_max_cpu,
                    max_network=config.sandbox_max_network,
                ),
                enforce_limits=config.sandbox_enforce_limits,
                metrics_interval=config.sandbox_metrics_interval,
            ),
            events=self.events,
        )
        self.metrics_runner = None

    async def start(self, *, metrics: bool = True) -> None:
        await self.storage.connect()
        self.cache.start_cleanup()
        self.monitor.start_monitoring()
        await self.sandbox.initialize()
        await self.orchestrator.initialize()

        if metrics:
            self.metrics_runner, _ = await start_metrics_server(port=self.config.metrics_port)
            logger.info(f"Metrics available on :{self.config.metrics_port}/metrics")

    async def close(self) -> None:
        await self.orchestrator.shutdown()
        await self.sandbox.shutdown()
        self.monitor.stop_monitoring()
        await self.cache.stop_cleanup()

        if self.metrics_runner is not None:
            await self.metrics_runner.shutdown()
            await self.metrics_runner.cleanup()
            self.metrics_runner = None

        await self.storage.close()

    async def __aenter__(self) -> "Application":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def run_seeds(app: Application, shutdown_event: asyncio.Event) -> None:
    for seed in app.config.seed_url_list():
        if shutdown_event.is_set():
            break
        results = await app.orchestrator.crawl_urls(seed)
        logger.info(f"Seed {seed}: {len(results)} pages crawled")


async def main(config: Optional[Config] = None) -> None:
    config = config or load_config()
    setup_logger(config.log_level, config.log_path, component="crawlbox")

    logger.info("Starting crawlbox...")

    app = Application(config)
    await app.start()

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    crawl_task = asyncio.create_task(run_seeds(app, shutdown_event))
    logger.info("crawlbox started successfully.")

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        crawl_task.cancel()
        await asyncio.gather(crawl_task, return_exceptions=True)
        await app.close()


# -------------------------------
# ENTRYPOINT
# -------------------------------
if __name__ == "__main__":
    asyncio.run(main())
