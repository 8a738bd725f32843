# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""
import json
import logging
from typing import NoReturn, Optional

import click
from pydantic import ValidationError

from veriforge.core.app import Services, build_services
from veriforge.core.config import get_settings
from veriforge.core.crypto import EnclaveSigner, random_seed
from veriforge.core.exceptions import VeriforgeError
from veriforge.core.hashing import digest_file
from veriforge.core.models import GenerationRequest


def _services(ctx: click.Context) -> Services:
    """Services from the context object, built from settings on first use."""
    root = ctx.find_root()
    if root.obj is None:
        root.obj = build_services(get_settings())
    return root.obj


def _fail(ctx: click.Context, error: VeriforgeError) -> NoReturn:
    click.echo(f"Error ({error.kind.value if error.kind else 'error'}): {error.message}", err=True)
    ctx.exit(1)


@click.group()  # type: ignore[misc]
@click.option("--log-level", default=None, help="Log level (defaults to VERIFORGE_LOG_LEVEL)")
def cli(log_level: Optional[str]) -> None:
    """Veriforge provenance certificate CLI."""
    logging.basicConfig(level=(log_level or get_settings().LOG_LEVEL).upper())


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from veriforge import __version__

    click.echo(f"Veriforge v{__version__}")


@cli.command()  # type: ignore[misc]
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def digest(file: str) -> None:
    """Print the SHA-256 content hash of FILE."""
    click.echo(digest_file(file).hex())


def _upload(services: Services, path: str) -> str:
    with open(path, "rb") as f:
        return services.blob_store.put(f.read())


@cli.command()  # type: ignore[misc]
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def upload(ctx: click.Context, file: str) -> None:
    """Store FILE in the blob store and print its reference."""
    try:
        ref = _upload(_services(ctx), file)
    except VeriforgeError as e:
        _fail(ctx, e)

    click.echo(ref)


@cli.command()  # type: ignore[misc]
@click.argument("ref")
@click.option(
    "--output", "-o", type=click.Path(dir_okay=False, writable=True), required=True,
    help="File to write the blob to",
)
@click.pass_context
def fetch(ctx: click.Context, ref: str, output: str) -> None:
    """Download the blob stored under REF."""
    try:
        data = _services(ctx).blob_store.get(ref)
    except VeriforgeError as e:
        _fail(ctx, e)

    with open(output, "wb") as f:
        f.write(data)
    click.echo(f"Wrote {len(data)} bytes to {output}")


@cli.command()  # type: ignore[misc]
@click.option("--seed-hex", default=None, help="32-byte seed as hex; random when omitted")
def keygen(seed_hex: Optional[str]) -> None:
    """Generate an enclave signing key."""
    try:
        seed = bytes.fromhex(seed_hex) if seed_hex else random_seed()
        signer = EnclaveSigner.from_seed(seed)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--seed-hex") from e

    click.echo(
        json.dumps(
            {
                "identity": signer.identity,
                "public_key": signer.public_bytes().hex(),
                "seed": seed.hex(),
            },
            indent=2,
        )
    )


@cli.command()  # type: ignore[misc]
@click.argument("prompt")
@click.option("--owner", required=True, help="Owner recorded in the certificate")
@click.option("--seed", type=click.IntRange(0, 2**64 - 1), default=None, help="Generation seed")
@click.option("--source", "source_ref", default=None, help="Blob reference of a source image to edit")
@click.option(
    "--source-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Source image file to upload and edit",
)
@click.option("--model", "model_id", default=None, help="Model identifier")
@click.pass_context
def mint(
    ctx: click.Context,
    prompt: str,
    owner: str,
    seed: Optional[int],
    source_ref: Optional[str],
    source_file: Optional[str],
    model_id: Optional[str],
) -> None:
    """Generate an image for PROMPT and certify it."""
    if source_ref and source_file:
        raise click.UsageError("--source and --source-file are mutually exclusive")

    services = _services(ctx)
    if source_file:
        try:
            source_ref = _upload(services, source_file)
        except VeriforgeError as e:
            _fail(ctx, e)

    try:
        request = GenerationRequest(
            prompt=prompt,
            seed=seed,
            source_image_ref=source_ref,
            model_id=model_id or services.default_model_id,
        )
    except ValidationError as e:
        raise click.UsageError(str(e)) from e

    outcome = services.orchestrator.mint(request, owner)
    click.echo(json.dumps(outcome.to_dict(), indent=2))
    if not outcome.succeeded:
        ctx.exit(1)


@cli.group()  # type: ignore[misc]
def verify() -> None:
    """Verify certificates and images."""


@verify.command("certificate")  # type: ignore[misc]
@click.argument("certificate_id")
@click.option("--prompt", default=None, help="Prompt guess to check against the certificate")
@click.pass_context
def verify_certificate(ctx: click.Context, certificate_id: str, prompt: Optional[str]) -> None:
    """Check that a certificate's image still matches its registered hash."""
    try:
        result = _services(ctx).engine.verify_by_id(certificate_id, prompt)
    except VeriforgeError as e:
        _fail(ctx, e)

    click.echo(result.to_json())
    if not result.authentic:
        ctx.exit(1)


@verify.command("image")  # type: ignore[misc]
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def verify_image(ctx: click.Context, file: str) -> None:
    """Look up the certificate for the image in FILE."""
    with open(file, "rb") as f:
        data = f.read()
    result = _services(ctx).engine.verify_by_image(data)
    click.echo(result.to_json())
    if not result.certified:
        ctx.exit(1)


@cli.command()  # type: ignore[misc]
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
def serve(host: str, port: int) -> None:
    """Run the HTTP API."""
    import uvicorn

    from veriforge.api.main import create_app

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    cli()
