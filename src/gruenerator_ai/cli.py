"""CLI entry point for the Gruenerator AI worker."""

from __future__ import annotations

import asyncio
import json
import signal
import uuid
from typing import Callable, Optional

import typer

from .config import WorkerConfig
from .errors import ConfigError, ProviderError
from .providers.base import CanonicalRequest, ProviderName, RequestOptions
from .providers.messages import Message
from .runtime import WorkerRuntime, create_dispatcher, perform_healthcheck
from .selector import select_provider

app = typer.Typer(help="Run and manage the Gruenerator AI dispatch worker.")


def _load_config() -> WorkerConfig:
    try:
        return WorkerConfig.from_env()
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


def _install_signal_handlers(runtime: WorkerRuntime) -> Callable[[], None]:
    loop = asyncio.get_running_loop()

    def _stop(*_: object) -> None:
        runtime.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            pass

    def _restore() -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass

    return _restore


@app.command()
def run() -> None:
    """Consume AI requests from the mailbox until interrupted."""
    config = _load_config()
    try:
        runtime = WorkerRuntime(config=config)
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc

    async def _runner() -> None:
        restore_signals = _install_signal_handlers(runtime)
        try:
            await runtime.run()
        finally:
            restore_signals()

    try:
        asyncio.run(_runner())
    except KeyboardInterrupt:  # pragma: no cover - handled by signal handlers
        typer.secho("Shutdown requested", fg=typer.colors.YELLOW)


@app.command()
def healthcheck() -> None:
    """Check Redis connectivity and that at least one provider is configured."""
    config = _load_config()

    async def _runner() -> bool:
        return await perform_healthcheck(config)

    healthy = asyncio.run(_runner())
    if not healthy:
        typer.secho("Worker is unhealthy", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Worker is healthy", fg=typer.colors.GREEN)


@app.command()
def select(
    request_type: str = typer.Option(..., "--type", help="Logical request type, e.g. sharepic."),
    pro: bool = typer.Option(False, "--pro", help="Request pro mode."),
    ultra: bool = typer.Option(False, "--ultra", help="Request ultra mode."),
    bedrock: bool = typer.Option(False, "--bedrock", help="Route to AWS Bedrock."),
    privacy: bool = typer.Option(False, "--privacy", help="Set privacyMode in request metadata."),
    model: Optional[str] = typer.Option(None, "--model", help="Caller model override."),
) -> None:
    """Show which provider and model a request would be routed to."""
    config = _load_config()
    options = RequestOptions(model=model, use_pro_mode=pro, use_ultra_mode=ultra, use_bedrock=bedrock)
    selection = select_provider(request_type, options, {"privacyMode": privacy}, config)
    configured = config.provider(selection.provider).is_configured
    typer.echo(f"provider={selection.provider.value} model={selection.model} configured={str(configured).lower()}")


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="User prompt to send."),
    request_type: str = typer.Option("chat", "--type", help="Logical request type."),
    provider: Optional[str] = typer.Option(None, "--provider", help="Force a specific provider."),
    system: Optional[str] = typer.Option(None, "--system", help="System prompt."),
    pro: bool = typer.Option(False, "--pro", help="Request pro mode."),
    ultra: bool = typer.Option(False, "--ultra", help="Request ultra mode."),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
) -> None:
    """Dispatch a single prompt through selection, retry and fallback."""
    config = _load_config()
    try:
        explicit = ProviderName.parse(provider) if provider else None
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc

    request = CanonicalRequest(
        type=request_type,
        messages=(Message(role="user", content=prompt),),
        options=RequestOptions(use_pro_mode=pro, use_ultra_mode=ultra),
        system_prompt=system,
        explicit_provider=explicit,
    )
    dispatcher = create_dispatcher(config)

    async def _runner():
        try:
            return await dispatcher.dispatch(f"cli-{uuid.uuid4().hex[:8]}", request)
        finally:
            await dispatcher.aclose()

    try:
        result = asyncio.run(_runner())
    except ConfigError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except ProviderError as exc:
        typer.secho(f"Dispatch failed ({exc.code}): {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    except Exception as exc:
        typer.secho(f"Dispatch failed ({type(exc).__name__}): {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    if as_json:
        typer.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
        return
    typer.echo(result.content or "")
    for call in result.tool_calls:
        typer.echo(f"[tool_use] {call.name} {json.dumps(call.input, ensure_ascii=False)}")


def main() -> None:
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    main()
