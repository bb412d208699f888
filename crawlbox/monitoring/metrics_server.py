from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Crawl Metrics
# -------------------------

CRAWLED_PAGES = Counter(
    "crawlbox_crawled_pages_total",
    "Pages fetched, parsed and accepted",
)

CRAWL_FAILURES = Counter(
    "crawlbox_crawl_failures_total",
    "Failed single-URL crawls",
    ["category"],
)

CACHE_LOOKUPS = Counter(
    "crawlbox_cache_lookups_total",
    "Result cache lookups",
    ["outcome"],
)

ROBOTS_SKIPPED = Counter(
    "crawlbox_robots_skipped_total",
    "URLs refused by robots.txt",
)

COMPLIANCE_ACTIONS = Counter(
    "crawlbox_compliance_actions_total",
    "Compliance rule matches",
    ["action"],
)

STORAGE_FAILURES = Counter(
    "crawlbox_storage_failures_total",
    "Crawl results that could not be persisted",
)

REQUEST_LATENCY = Histogram(
    "crawlbox_navigation_latency_seconds",
    "Time to load a page in the browser",
)

FRONTIER_PENDING = Gauge(
    "crawlbox_frontier_pending",
    "URLs waiting in the BFS frontier",
)

# -------------------------
# Resource & Sandbox Metrics
# -------------------------

PROCESS_MEMORY = Gauge(
    "crawlbox_process_memory_bytes",
    "Resident memory of the sampled process",
)

PROCESS_CPU = Gauge(
    "crawlbox_process_cpu_percent",
    "CPU usage of the sampled process",
)

RESOURCE_LIMIT_BREACHES = Counter(
    "crawlbox_resource_limit_breaches_total",
    "Samples above the configured limits",
    ["source", "resource"],
)

SANDBOX_TASKS = Counter(
    "crawlbox_sandbox_tasks_total",
    "Sandbox tasks by terminal status",
    ["status"],
)

SANDBOX_RUNNING = Gauge(
    "crawlbox_sandbox_running",
    "Sandbox tasks currently running",
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp rejects a content_type that carries a charset
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )


async def start_metrics_server(port=8000, host="0.0.0.0"):
    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    return runner, site
