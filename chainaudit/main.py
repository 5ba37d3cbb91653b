"""Main entry point for the chainaudit application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, Tuple

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from chainaudit.core.command_handler import CommandHandler
from chainaudit.core.services.analyzer_factory import AnalyzerFactory
from chainaudit.core.services.ensemble_analyzer import AIEnsembleAnalyzer
from chainaudit.core.services.fallback_service import AnalyzerFallbackService, FallbackConfig
from chainaudit.core.services.health_service import HealthService
from chainaudit.core.services.platform_registry import BlockchainRegistry

# --- Domain Layer ---
from chainaudit.domain.models.ai import EnsembleMember

# --- Infrastructure Layer ---
from chainaudit.infrastructure.ai.groq.groq_client import GroqClient
from chainaudit.infrastructure.ai.openai.gpt_client import GptClient
from chainaudit.infrastructure.analyzers.builders import default_analyzer_builders
from chainaudit.infrastructure.cli.display import ConsoleDisplay
from chainaudit.infrastructure.config.settings import (
    get_ai_max_tokens,
    get_ai_models,
    get_ai_temperature,
    get_ai_timeout,
    get_analysis_timeout,
    get_config,
    get_ensemble_threshold,
    get_fallback_settings,
    get_groq_api_key,
    get_health_check_timeout,
    get_max_contract_size,
    get_openrouter_api_key,
    get_openrouter_base_url,
    is_ai_enabled,
    load_configuration,
)
from chainaudit.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, level_from_name, setup_logging
from chainaudit.infrastructure.resilience.api_retry import ApiRetryService
from chainaudit.infrastructure.resilience.rate_limiter import RateLimiter
from chainaudit.infrastructure.tools.subprocess_invoker import SubprocessToolInvoker

logger = logging.getLogger(__name__)

PROVIDERS = ("openrouter", "groq")


def parse_model_spec(spec: str) -> Tuple[str, str]:
    """Splits ``provider:model``; entries without a known provider prefix are OpenRouter ids."""
    provider, separator, model = spec.partition(":")
    if separator and provider.lower() in PROVIDERS and model:
        return provider.lower(), model
    return "openrouter", spec


def create_ensemble(model_specs: List[str]) -> Optional[AIEnsembleAnalyzer]:
    """Builds the AI ensemble from the configured models, skipping providers without keys."""
    clients: Dict[str, Any] = {}
    members: List[EnsembleMember] = []
    timeout = get_ai_timeout()

    for spec in model_specs:
        provider, model_id = parse_model_spec(spec)
        if provider not in clients:
            try:
                if provider == "groq":
                    api_key = get_groq_api_key()
                    clients[provider] = GroqClient(api_key=api_key, timeout=timeout) if api_key else None
                else:
                    api_key = get_openrouter_api_key()
                    clients[provider] = (
                        GptClient(api_key=api_key, base_url=get_openrouter_base_url(), timeout=timeout)
                        if api_key else None
                    )
            except Exception as e:
                logger.error(f"Failed to initialize {provider} client: {e}", exc_info=True)
                clients[provider] = None
            if clients[provider] is None:
                logger.warning(f"{provider} API key not found, models from {provider} disabled.")
        if clients[provider] is not None:
            members.append(EnsembleMember(model_id=model_id, client=clients[provider], provider=provider))

    if not members:
        logger.warning("No AI models available; analysis will run static tools only.")
        return None

    retry_services = {
        provider: ApiRetryService(rate_limiter=RateLimiter(name=provider))
        for provider, client in clients.items() if client is not None
    }
    return AIEnsembleAnalyzer(
        members,
        timeout=timeout,
        max_tokens=get_ai_max_tokens(),
        temperature=get_ai_temperature(),
        ensemble_threshold=get_ensemble_threshold(),
        retry_services=retry_services,
    )


# --- Dependency Injection Container (Manual) ---

def create_dependencies(enable_ai: bool = True) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.

    Args:
        enable_ai: False disables the AI stage and the AI-only fallback.
    """
    dependencies: Dict[str, Any] = {}

    # 1. Load Configuration First
    load_configuration()
    setup_logging(
        log_level=level_from_name(get_config('logging.level', 'WARNING')),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=get_config('logging.file'),
    )
    logger.info("Configuration and logging initialized.")

    # 2. Infrastructure adapters
    dependencies['ui'] = ConsoleDisplay()
    dependencies['tool_invoker'] = SubprocessToolInvoker()
    use_ai = enable_ai and is_ai_enabled()
    dependencies['ai_ensemble'] = create_ensemble(get_ai_models()) if use_ai else None

    # 3. Core services
    dependencies['registry'] = BlockchainRegistry()
    builders = default_analyzer_builders(
        dependencies['tool_invoker'],
        ai_ensemble=dependencies['ai_ensemble'],
        timeout=get_analysis_timeout(),
        max_contract_size=get_max_contract_size(),
        health_check_timeout=get_health_check_timeout(),
        enable_ai=use_ai,
    )
    dependencies['factory'] = AnalyzerFactory(dependencies['registry'], builders)

    fallback_config = FallbackConfig.from_settings(get_fallback_settings())
    fallback_config.enable_ai_fallback = fallback_config.enable_ai_fallback and dependencies['ai_ensemble'] is not None
    dependencies['fallback_service'] = AnalyzerFallbackService(
        registry=dependencies['registry'],
        config=fallback_config,
    )
    dependencies['health_service'] = HealthService(dependencies['registry'], dependencies['factory'])

    # 4. Command Handler
    dependencies['command_handler'] = CommandHandler(
        registry=dependencies['registry'],
        factory=dependencies['factory'],
        fallback_service=dependencies['fallback_service'],
        health_service=dependencies['health_service'],
        ui=dependencies['ui'],
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="chainaudit",
    help="chainaudit: multi-chain smart contract analysis with static tools and an AI ensemble.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any], ui: Any) -> Any:
    """Runs an async handler from a sync Typer command; returns None on failure."""
    try:
        return asyncio.run(coro)
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        ui.display_error(f"Command execution failed: {e}")
        return None


def _build(enable_ai: bool = True) -> Dict[str, Any]:
    try:
        return create_dependencies(enable_ai=enable_ai)
    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        raise typer.Exit(code=1)


# --- CLI Commands ---

@app.command()
def analyze(
    files: Annotated[List[Path], typer.Argument(
        exists=True, file_okay=True, dir_okay=False, readable=True,
        help="Contract source files to analyze.",
    )],
    platform: Annotated[Optional[str], typer.Option(
        "--platform", "-p", help="Platform id (ethereum, solana, cardano, aptos, sui, ...). Detected from the extension if omitted.",
    )] = None,
    no_ai: Annotated[bool, typer.Option("--no-ai", help="Skip the AI ensemble.")] = False,
    no_fallback: Annotated[bool, typer.Option("--no-fallback", help="Report failures instead of degrading.")] = False,
):
    """Analyze smart contract files for vulnerabilities."""
    dependencies = _build(enable_ai=not no_ai)
    handler: CommandHandler = dependencies['command_handler']
    success = run_async(
        handler.handle_analyze([str(f) for f in files], platform=platform, use_fallback=not no_fallback),
        dependencies['ui'],
    )
    if not success:
        raise typer.Exit(code=1)


@app.command()
def health():
    """Check which platform toolchains are installed."""
    dependencies = _build(enable_ai=False)
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_health(), dependencies['ui'])


@app.command(name="validate-analyzer")
def validate_analyzer_command(
    platform: Annotated[str, typer.Argument(help="Platform id to validate.")],
):
    """Check that a platform's analyzer is registered, active and installed."""
    dependencies = _build(enable_ai=False)
    handler: CommandHandler = dependencies['command_handler']
    valid = run_async(handler.handle_validate_analyzer(platform), dependencies['ui'])
    if not valid:
        raise typer.Exit(code=1)


@app.command()
def platforms():
    """List supported platforms."""
    dependencies = _build(enable_ai=False)
    handler: CommandHandler = dependencies['command_handler']
    handler.handle_platforms()


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
