"""Рандомизированный fingerprint для изолированного контекста браузера."""
import json
import random
from dataclasses import dataclass, field
from typing import Any

# Десктопные user agent-ы (Windows / macOS / Linux)
USER_AGENTS: list[tuple[str, str]] = [
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36", "Win32"),
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36", "Win32"),
    ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0", "Win32"),
    ("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36", "MacIntel"),
    ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36", "MacIntel"),
    ("Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
     "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36", "Linux x86_64"),
]

VIEWPORTS: list[dict[str, int]] = [
    {"width": 1920, "height": 1080},
    {"width": 1680, "height": 1050},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
    {"width": 1280, "height": 800},
]

# locale, timezone, Accept-Language, (lat, lon) согласованы между собой
LOCALES: list[tuple[str, str, str, tuple[float, float]]] = [
    ("en-US", "America/New_York", "en-US,en;q=0.9", (40.7128, -74.0060)),
    ("en-US", "America/Chicago", "en-US,en;q=0.9", (41.8781, -87.6298)),
    ("en-US", "America/Los_Angeles", "en-US,en;q=0.9", (34.0522, -118.2437)),
    ("en-GB", "Europe/London", "en-GB,en;q=0.9,en-US;q=0.8", (51.5074, -0.1278)),
    ("en-CA", "America/Toronto", "en-CA,en;q=0.9,fr-CA;q=0.7", (43.6532, -79.3832)),
]

WEBGL_VENDORS: list[tuple[str, str]] = [
    ("Intel Inc.", "Intel Iris OpenGL Engine"),
    ("Google Inc. (NVIDIA)", "ANGLE (NVIDIA, NVIDIA GeForce GTX 1660 Direct3D11 vs_5_0 ps_5_0)"),
    ("Google Inc. (Intel)", "ANGLE (Intel, Intel(R) UHD Graphics 630 Direct3D11 vs_5_0 ps_5_0)"),
    ("Google Inc. (AMD)", "ANGLE (AMD, AMD Radeon RX 580 Direct3D11 vs_5_0 ps_5_0)"),
]

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
]

_STEALTH_TEMPLATE = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', {
    get: () => {
        const plugins = [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
            { name: 'Native Client', filename: 'internal-nacl-plugin' }
        ];
        plugins.length = 3;
        return plugins;
    }
});
Object.defineProperty(navigator, 'languages', { get: () => __LANGUAGES__ });
Object.defineProperty(navigator, 'platform', { get: () => __PLATFORM__ });
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => __CORES__ });
Object.defineProperty(navigator, 'deviceMemory', { get: () => __MEMORY__ });
window.chrome = { runtime: {}, loadTimes: function() {}, csi: function() {}, app: {} };
const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
        ? Promise.resolve({ state: Notification.permission })
        : originalQuery(parameters)
);
const getParameter = WebGLRenderingContext.prototype.getParameter;
WebGLRenderingContext.prototype.getParameter = function(parameter) {
    if (parameter === 37445) return __WEBGL_VENDOR__;
    if (parameter === 37446) return __WEBGL_RENDERER__;
    return getParameter.call(this, parameter);
};
"""


@dataclass(frozen=True)
class Fingerprint:
    """Параметры одной сессии. Выбираются один раз и не меняются до закрытия."""

    user_agent: str
    platform: str
    viewport: dict[str, int]
    locale: str
    timezone_id: str
    accept_language: str
    geolocation: dict[str, float]
    hardware_concurrency: int
    device_memory: int
    webgl_vendor: str
    webgl_renderer: str
    extra_headers: dict[str, str] = field(default_factory=dict)

    def context_options(self, proxy: dict[str, str] | None = None) -> dict[str, Any]:
        """kwargs для browser.new_context()."""
        options: dict[str, Any] = {
            "user_agent": self.user_agent,
            "viewport": self.viewport,
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "permissions": ["geolocation"],
            "geolocation": self.geolocation,
            "color_scheme": "light",
            "extra_http_headers": self.extra_headers,
        }
        if proxy:
            options["proxy"] = proxy
        return options

    def init_script(self) -> str:
        """JS-патчи, скрывающие признаки автоматизации."""
        languages = [self.locale, self.locale.split("-")[0]]
        replacements = {
            "__LANGUAGES__": json.dumps(languages),
            "__PLATFORM__": json.dumps(self.platform),
            "__CORES__": str(self.hardware_concurrency),
            "__MEMORY__": str(self.device_memory),
            "__WEBGL_VENDOR__": json.dumps(self.webgl_vendor),
            "__WEBGL_RENDERER__": json.dumps(self.webgl_renderer),
        }
        script = _STEALTH_TEMPLATE
        for placeholder, value in replacements.items():
            script = script.replace(placeholder, value)
        return script


def generate_fingerprint(rng: random.Random | None = None) -> Fingerprint:
    """Случайный, но внутренне согласованный fingerprint."""
    rng = rng or random.Random()
    user_agent, platform = rng.choice(USER_AGENTS)
    locale, timezone_id, accept_language, (lat, lon) = rng.choice(LOCALES)
    webgl_vendor, webgl_renderer = rng.choice(WEBGL_VENDORS)

    return Fingerprint(
        user_agent=user_agent,
        platform=platform,
        viewport=dict(rng.choice(VIEWPORTS)),
        locale=locale,
        timezone_id=timezone_id,
        accept_language=accept_language,
        geolocation={"latitude": lat, "longitude": lon},
        hardware_concurrency=rng.choice([4, 8, 12, 16]),
        device_memory=rng.choice([4, 8, 16]),
        webgl_vendor=webgl_vendor,
        webgl_renderer=webgl_renderer,
        extra_headers={
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
            "Accept-Language": accept_language,
            "DNT": "1",
            "Upgrade-Insecure-Requests": "1",
        },
    )
