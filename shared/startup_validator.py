"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than mid-conversation
when the first pipeline run or tool dispatch is attempted.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

TOOL_SERVICE_PLACEHOLDER_URL = "https://tools.example.com"


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(
    settings: Settings | None = None,
    check_redis: bool = True,
) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Args:
        settings: Settings to validate (defaults to the cached application settings)
        check_redis: If True, an unreachable Redis is CRITICAL.
                     Set to False for offline checks.

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = settings or get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Inference provider credentials
    provider = settings.LLM_PROVIDER.lower()
    if provider == "openrouter":
        if settings.OPENROUTER_API_KEY == "sk-or-placeholder":
            critical_failures.append(
                "OPENROUTER_API_KEY is placeholder - set your OpenRouter API key"
            )
            results["inference_api_key"] = False
        else:
            if not settings.OPENROUTER_API_KEY.startswith("sk-or-"):
                logger.warning(
                    "OPENROUTER_API_KEY doesn't start with 'sk-or-' - verify it's correct"
                )
            results["inference_api_key"] = True
            logger.info("  [OK] OpenRouter API key configured")
    elif provider == "anthropic":
        if settings.ANTHROPIC_API_KEY == "sk-ant-placeholder":
            critical_failures.append(
                "ANTHROPIC_API_KEY is placeholder - set your Anthropic API key"
            )
            results["inference_api_key"] = False
        else:
            results["inference_api_key"] = True
            logger.info("  [OK] Anthropic API key configured")
    else:
        critical_failures.append(
            f"LLM_PROVIDER '{settings.LLM_PROVIDER}' is not supported (openrouter, anthropic)"
        )
        results["inference_api_key"] = False

    # 2. Batch timings are positive and bounded by the max-wait ceiling
    delays = {
        "BATCH_URGENT_DELAY_MS": settings.BATCH_URGENT_DELAY_MS,
        "BATCH_AFFIRMATION_DELAY_MS": settings.BATCH_AFFIRMATION_DELAY_MS,
        "BATCH_FAST_TRACK_DELAY_MS": settings.BATCH_FAST_TRACK_DELAY_MS,
        "BATCH_NORMAL_DELAY_MS": settings.BATCH_NORMAL_DELAY_MS,
        "BATCH_EXTENDED_DELAY_MS": settings.BATCH_EXTENDED_DELAY_MS,
    }
    timing_errors = [f"{name} must be positive" for name, value in delays.items() if value <= 0]
    if settings.BATCH_MAX_WAIT_MS < max(delays.values()):
        timing_errors.append(
            f"BATCH_MAX_WAIT_MS ({settings.BATCH_MAX_WAIT_MS}) is shorter than "
            f"the longest debounce delay ({max(delays.values())})"
        )
    if timing_errors:
        critical_failures.extend(timing_errors)
        results["batch_timings"] = False
    else:
        results["batch_timings"] = True
        logger.info("  [OK] Batch timings consistent")

    # 3. Redis reachable (requires connection)
    if check_redis:
        try:
            from shared.redis_client import get_redis_client

            redis = get_redis_client()
            await redis.ping()
            results["redis_connection"] = True
            logger.info("  [OK] Redis reachable")
        except Exception as e:
            critical_failures.append(f"Redis connection failed: {e}")
            results["redis_connection"] = False

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 4. Tool Service endpoint
    if settings.TOOL_SERVICE_URL == TOOL_SERVICE_PLACEHOLDER_URL:
        logger.warning(
            "TOOL_SERVICE_URL is placeholder - every tool dispatch will fail"
        )
        results["tool_service_url"] = False
    else:
        results["tool_service_url"] = True

    # 5. Countdown tick shorter than the countdown itself
    if settings.COUNTDOWN_TICK_MS <= 0 or settings.COUNTDOWN_TICK_MS > settings.AUTO_EXECUTE_COUNTDOWN_MS:
        logger.warning(
            "COUNTDOWN_TICK_MS should be positive and not exceed AUTO_EXECUTE_COUNTDOWN_MS"
        )
        results["countdown_tick"] = False
    else:
        results["countdown_tick"] = True

    # 6. Langfuse configuration (optional but recommended)
    if settings.LANGFUSE_ENABLED and settings.LANGFUSE_PUBLIC_KEY == "pk-lf-placeholder":
        logger.warning(
            "LANGFUSE_ENABLED is set but LANGFUSE_PUBLIC_KEY is placeholder - tracing disabled"
        )
        results["langfuse_configured"] = False
    elif not settings.LANGFUSE_ENABLED:
        logger.info("  [INFO] Langfuse not enabled - observability disabled")
        results["langfuse_configured"] = False
    else:
        results["langfuse_configured"] = True
        logger.info("  [OK] Langfuse configured for observability")

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
