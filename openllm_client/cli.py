"""openllm CLI: Typer + Rich terminal interface.

Commands: health, models (list/register/load/unload), infer, route,
catalog, serve.
All output is Rich-powered; engine errors exit with status 1.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from openllm_client import __version__
from openllm_client.client import OpenLLMClient
from openllm_client.errors import OpenLLMError
from openllm_client.registry import ModelRegistry, load_registry
from openllm_client.routing.router import RequestRouter
from openllm_client.schemas.config import ClientConfig
from openllm_client.schemas.inference import (
    InferenceRequest,
    InferenceResponse,
    StreamToken,
)
from openllm_client.schemas.models import (
    InferenceBackend,
    LatencyProfile,
    LoadModelRequest,
    ModelCapability,
    ModelDescriptor,
    RegisterModelRequest,
)
from openllm_client.schemas.routing import RouteOptions, RouteRequest
from openllm_client.settings import load_client_config, load_env_file

console = Console()

T = TypeVar("T")

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="openllm",
    help="Client for an OpenLLM inference engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

models_app = typer.Typer(
    name="models",
    help="Manage models on the engine.",
    no_args_is_help=True,
)
app.add_typer(models_app, name="models")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"openllm {__version__}")
        raise typer.Exit()


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ── App Callback ────────────────────────────────────────────────


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    engine: str = typer.Option(
        None, "--engine", "-e",
        help="Engine port or base URL (overrides OPENLLM_ENGINE)",
    ),
    timeout: float = typer.Option(
        None, "--timeout", "-t",
        help="Deadline in seconds per engine call",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Log stream lifecycle and routing decisions",
    ),
) -> None:
    """Talk to an OpenLLM inference engine from the terminal."""
    if verbose:
        _configure_logging()
    load_env_file()
    config = _load_config()
    overrides: dict[str, object] = {}
    if engine:
        overrides["engine"] = engine
    if timeout:
        overrides["timeout"] = timeout
    ctx.obj = config.model_copy(update=overrides) if overrides else config


# ── Helpers ──────────────────────────────────────────────────────


def _load_config() -> ClientConfig:
    """Load client config, exit on error."""
    try:
        return load_client_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _load_catalog(path: Path | None) -> ModelRegistry:
    """Load the local model catalog, exit on error."""
    try:
        return load_registry(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading catalog:[/red] {e}")
        raise typer.Exit(1) from None


def _config(ctx: typer.Context) -> ClientConfig:
    return ctx.obj if isinstance(ctx.obj, ClientConfig) else _load_config()


def _run(
    config: ClientConfig,
    call: Callable[[OpenLLMClient], Awaitable[T]],
) -> T:
    """Run one client call to completion, exit 1 on OpenLLMError."""

    async def _go() -> T:
        async with OpenLLMClient(config) as client:
            return await call(client)

    try:
        return asyncio.run(_go())
    except OpenLLMError as e:
        console.print(f"[red]{e.code}:[/red] {e.message}")
        raise typer.Exit(1) from None


def _models_table(models: list[ModelDescriptor], title: str) -> Table:
    table = Table(title=title, show_lines=True)
    table.add_column("ID", style="bold cyan")
    table.add_column("Name")
    table.add_column("Backend", style="dim")
    table.add_column("Context", justify="right")
    table.add_column("Capabilities")
    table.add_column("Latency")
    table.add_column("Loaded", justify="center")

    for model in models:
        table.add_row(
            model.id,
            model.name,
            model.inference.value,
            f"{model.context:,}",
            ", ".join(c.value for c in model.capabilities) or "none",
            model.latency.value if model.latency else "-",
            "[green]yes[/green]" if model.loaded else "[dim]no[/dim]",
        )
    return table


def _print_response(response: InferenceResponse) -> None:
    console.print(Panel(
        response.text,
        title=f"[bold blue]{response.model_id}[/bold blue]",
        border_style="blue",
    ))
    console.print(
        f"[dim]{response.tokens_generated} tokens, "
        f"finish reason: {response.finish_reason}[/dim]"
    )


# ── openllm health ───────────────────────────────────────────────


@app.command()
def health(ctx: typer.Context) -> None:
    """Check that the engine is up."""
    config = _config(ctx)
    result = _run(config, lambda c: c.health())
    console.print(
        f"[green]{result.status}[/green] at {config.base_url} "
        f"[dim]({result.models_loaded} model(s) loaded, {result.timestamp})[/dim]"
    )


# ── openllm models ───────────────────────────────────────────────


@models_app.command("list")
def models_list(ctx: typer.Context) -> None:
    """Show all models registered on the engine."""
    result = _run(_config(ctx), lambda c: c.list_models())
    console.print(_models_table(result.models, "Engine Models"))
    console.print(f"\n[dim]{len(result.models)} models registered[/dim]")


@models_app.command("register")
def models_register(
    ctx: typer.Context,
    model_id: str = typer.Argument(..., help="Model identifier"),
    name: str = typer.Option(None, "--name", help="Display name (defaults to the id)"),
    backend: InferenceBackend = typer.Option(
        InferenceBackend.OLLAMA, "--backend", "-b", help="Inference backend",
    ),
    context: int = typer.Option(4096, "--context", "-c", help="Context window in tokens"),
    capability: list[ModelCapability] = typer.Option(
        None, "--capability", help="Declared capability (repeatable)",
    ),
    latency: LatencyProfile = typer.Option(None, "--latency", help="Latency class"),
    quant: str = typer.Option(None, "--quant", help="Quantization label"),
) -> None:
    """Register a model with the engine."""
    request = RegisterModelRequest(
        id=model_id,
        name=name or model_id,
        inference=backend,
        context=context,
        quant=quant,
        capabilities=capability or [ModelCapability.CHAT],
        latency=latency,
    )
    result = _run(_config(ctx), lambda c: c.register_model(request))
    console.print(f"[green]{result.message}:[/green] {result.model.id}")


@models_app.command("load")
def models_load(
    ctx: typer.Context,
    model_id: str = typer.Argument(..., help="Model to load"),
) -> None:
    """Load a registered model."""
    result = _run(_config(ctx), lambda c: c.load_model(LoadModelRequest(model_id=model_id)))
    console.print(f"[green]{result.message}:[/green] {result.model_id}")


@models_app.command("unload")
def models_unload(
    ctx: typer.Context,
    model_id: str = typer.Argument(..., help="Model to unload"),
) -> None:
    """Unload a model."""
    result = _run(_config(ctx), lambda c: c.unload_model(model_id))
    console.print(f"[green]{result.message}:[/green] {result.model_id}")


# ── openllm infer ────────────────────────────────────────────────


def _stream_to_console(
    client: OpenLLMClient, request: InferenceRequest,
) -> Awaitable[InferenceResponse | None]:
    def on_token(token: StreamToken) -> None:
        console.print(token.token, end="", markup=False, highlight=False)

    def on_complete(response: InferenceResponse) -> None:
        console.print()
        console.print(f"[dim]{response.tokens_generated} tokens streamed[/dim]")

    def on_error(error: OpenLLMError) -> None:
        console.print()
        console.print(f"[red]{error.code}:[/red] {error.message}")

    return client.inference_stream(
        request, on_token, on_complete=on_complete, on_error=on_error,
    )


@app.command()
def infer(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Prompt text"),
    model: str = typer.Option(..., "--model", "-m", help="Model identifier"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Upper bound on tokens"),
    temperature: float = typer.Option(None, "--temperature", help="Sampling temperature"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Stream tokens as they arrive"),
) -> None:
    """Run an inference against a named model."""
    request = InferenceRequest(
        model_id=model, prompt=prompt, max_tokens=max_tokens, temperature=temperature,
    )
    config = _config(ctx)
    if stream:
        result = _run(config, lambda c: _stream_to_console(c, request))
        if result is None:
            raise typer.Exit(1)
        return
    _print_response(_run(config, lambda c: c.inference(request)))


# ── openllm route ────────────────────────────────────────────────


@app.command()
def route(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Prompt text"),
    model: str = typer.Option(None, "--model", "-m", help="Explicit model (skips selection)"),
    capability: ModelCapability = typer.Option(
        ModelCapability.CHAT, "--capability", help="Required capability",
    ),
    latency: LatencyProfile = typer.Option(None, "--latency", help="Required latency class"),
    backend: InferenceBackend = typer.Option(None, "--backend", "-b", help="Required backend"),
    min_context: int = typer.Option(None, "--min-context", help="Minimum context window"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Upper bound on tokens"),
    temperature: float = typer.Option(None, "--temperature", help="Sampling temperature"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Stream tokens as they arrive"),
    catalog: Path = typer.Option(None, "--catalog", help="Path to a models.toml catalog"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show which model would be used"),
) -> None:
    """Pick a model from the local catalog and run the prompt on it."""
    registry = _load_catalog(catalog)
    request = RouteRequest(
        prompt=prompt,
        options=RouteOptions(
            model=model,
            capability=capability,
            latency=latency,
            inference=backend,
            min_context=min_context,
            max_tokens=max_tokens,
            temperature=temperature,
        ),
    )
    config = _config(ctx)

    async def _route(client: OpenLLMClient) -> InferenceResponse | InferenceRequest | None:
        router = RequestRouter(registry, client)
        resolved = router.build_request(request)
        console.print(f"[dim]Routing to[/dim] [bold cyan]{resolved.model_id}[/bold cyan]")
        if dry_run:
            return resolved
        if stream:
            return await _stream_to_console(client, resolved)
        return await client.inference(resolved)

    result = _run(config, _route)
    if result is None:
        raise typer.Exit(1)
    if isinstance(result, InferenceResponse) and not stream:
        _print_response(result)


# ── openllm catalog ──────────────────────────────────────────────


@app.command("catalog")
def catalog_show(
    path: Path = typer.Option(None, "--path", help="Path to a models.toml catalog"),
) -> None:
    """Show the local model catalog used for routing."""
    registry = _load_catalog(path)
    console.print(_models_table(registry.list(), "Model Catalog"))
    console.print(f"\n[dim]{registry.count()} models in catalog (first match wins)[/dim]")


# ── openllm serve ────────────────────────────────────────────────


@app.command()
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    modelrouter: bool = typer.Option(
        None, "--modelrouter/--no-modelrouter",
        help="Mount the implicit routing endpoint (defaults to config)",
    ),
    catalog: Path = typer.Option(None, "--catalog", help="Path to a models.toml catalog"),
) -> None:
    """Serve the engine routes over HTTP.

    Requires: pip install openllm-client[api]
    """
    try:
        from openllm_client.api.routes import create_app
    except ImportError:
        console.print(
            "[red]Serving requires extra dependencies.[/red]\n"
            "Install with: [bold]pip install openllm-client\\[api][/bold]"
        )
        raise typer.Exit(1) from None

    config = _config(ctx)
    if modelrouter is not None:
        config = config.model_copy(update={"modelrouter": modelrouter})
    registry = _load_catalog(catalog) if config.modelrouter else None

    console.print(Panel(
        f"[bold]URL:[/bold] http://{host}:{port}{config.prefix}\n"
        f"[bold]Engine:[/bold] {config.base_url}\n"
        f"[bold]Router:[/bold] {'on' if config.modelrouter else 'off'}",
        title="[bold blue]OpenLLM Gateway[/bold blue]",
        border_style="blue",
    ))

    import uvicorn

    uvicorn.run(create_app(config, registry=registry), host=host, port=port, log_level="warning")


# ── Entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    app()
