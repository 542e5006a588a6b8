from __future__ import annotations

import logging
import time

from .config import Settings
from .errors import ConfigurationError
from .models import HealthProbe, HealthReport, ProviderHealth
from .providers import ProviderRegistry

logger = logging.getLogger("chat_proxy.health")


async def collect_health(settings: Settings, registry: ProviderRegistry) -> HealthReport:
    """Purpose: Report reachability and credential presence for every provider.
    Inputs/Outputs: Inputs are Settings and the registry; output is a HealthReport.
    Side Effects / State: One 1-token Gemini call; may build the shared client.
    Dependencies: GeminiClient.check_health through ProviderRegistry.
    Failure Modes: A missing key becomes ok=False with the configuration message.
    If Removed: The settings screen cannot show which providers are usable.
    Testing Notes: Declared providers never trigger a network call.
    """
    # Only the implemented provider is probed; the rest are reported structurally.
    started = time.perf_counter()
    try:
        probe = await registry.get_client("gemini").check_health()
    except ConfigurationError as exc:
        probe = HealthProbe(ok=False, error=str(exc))

    report = HealthReport(
        providers={
            "gemini": ProviderHealth(
                has_api_key=bool(settings.gemini_api_key),
                ok=probe.ok,
                error=probe.error,
            ),
            "openai": ProviderHealth(
                has_api_key=bool(settings.openai_api_key),
                implemented=False,
            ),
            "claude": ProviderHealth(
                has_api_key=bool(settings.anthropic_api_key),
                implemented=False,
            ),
        }
    )
    logger.info(
        "llm-health duration_ms=%d gemini_key=%s gemini_ok=%s openai_key=%s claude_key=%s",
        (time.perf_counter() - started) * 1000,
        report.providers["gemini"].has_api_key,
        probe.ok,
        report.providers["openai"].has_api_key,
        report.providers["claude"].has_api_key,
    )
    return report
