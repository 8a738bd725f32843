# SPDX-License-Identifier: MPL-2.0
"""Tests for the command-line interface."""

import json

from click.testing import CliRunner

from veriforge import __version__
from veriforge.cli.main import cli
from veriforge.core.crypto import EnclaveSigner
from veriforge.core.hashing import digest


def invoke(services, *args):
    return CliRunner().invoke(cli, ["--log-level", "ERROR", *args], obj=services)


def test_version() -> None:
    """The version command prints the package version."""
    result = CliRunner().invoke(cli, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_digest(tmp_path) -> None:
    """digest prints the SHA-256 of a file."""
    path = tmp_path / "image.png"
    path.write_bytes(b"image")
    result = CliRunner().invoke(cli, ["digest", str(path)])
    assert result.exit_code == 0
    assert result.output.strip() == digest(b"image").hex()


def test_keygen_from_seed() -> None:
    """keygen derives the same key as EnclaveSigner for a given seed."""
    result = CliRunner().invoke(cli, ["keygen", "--seed-hex", "22" * 32])
    assert result.exit_code == 0
    data = json.loads(result.output)
    signer = EnclaveSigner.from_seed(bytes.fromhex("22" * 32))
    assert data["public_key"] == signer.public_bytes().hex()
    assert data["identity"] == signer.identity


def test_keygen_rejects_bad_seed() -> None:
    """A seed that is not 32 bytes is rejected."""
    result = CliRunner().invoke(cli, ["keygen", "--seed-hex", "abcd"])
    assert result.exit_code != 0


def test_mint_then_verify(services, blob_store, tmp_path) -> None:
    """A minted certificate verifies by id and by image."""
    result = invoke(services, "mint", "a red fox", "--owner", "alice", "--seed", "42")
    assert result.exit_code == 0, result.output
    certificate = json.loads(result.output)["certificate"]

    result = invoke(services, "verify", "certificate", certificate["id"], "--prompt", "a red fox")
    assert result.exit_code == 0
    assert json.loads(result.output)["prompt_check"] == "prompt_matches"

    path = tmp_path / "image.png"
    path.write_bytes(blob_store.get(certificate["output_blob_ref"]))
    result = invoke(services, "verify", "image", str(path))
    assert result.exit_code == 0
    assert json.loads(result.output)["certificate"]["id"] == certificate["id"]


def test_duplicate_mint_exits_zero(services) -> None:
    """Re-minting existing content succeeds with the existing certificate."""
    invoke(services, "mint", "a red fox", "--owner", "alice")
    result = invoke(services, "mint", "a red fox", "--owner", "bob")
    assert result.exit_code == 0
    assert json.loads(result.output)["state"] == "duplicate_detected"


def test_failed_mint_exits_one(services, key_store, signer) -> None:
    """A failed mint exits with status 1 and reports the reason."""
    key_store.revoke(signer.identity)
    result = invoke(services, "mint", "a red fox", "--owner", "alice")
    assert result.exit_code == 1
    assert json.loads(result.output)["reason"] == "UnknownEnclave"


def test_verify_tampered_exits_one(services, blob_store) -> None:
    """A tampered image exits with status 1."""
    certificate = json.loads(invoke(services, "mint", "a red fox", "--owner", "alice").output)[
        "certificate"
    ]
    blob_store.overwrite(certificate["output_blob_ref"], b"tampered")
    result = invoke(services, "verify", "certificate", certificate["id"])
    assert result.exit_code == 1
    assert json.loads(result.output)["outcome"] == "tampered"


def test_verify_uncertified_image_exits_one(services, tmp_path) -> None:
    """An image without a certificate exits with status 1."""
    path = tmp_path / "image.png"
    path.write_bytes(b"never minted")
    result = invoke(services, "verify", "image", str(path))
    assert result.exit_code == 1
    assert not json.loads(result.output)["certified"]


def test_upload_and_fetch(services, blob_store, tmp_path) -> None:
    """upload stores a file and fetch writes it back out."""
    source = tmp_path / "source.png"
    source.write_bytes(b"source image")
    result = invoke(services, "upload", str(source))
    assert result.exit_code == 0
    ref = result.output.strip()
    assert blob_store.get(ref) == b"source image"

    out = tmp_path / "copy.png"
    result = invoke(services, "fetch", ref, "--output", str(out))
    assert result.exit_code == 0
    assert out.read_bytes() == b"source image"


def test_fetch_missing_blob_exits_one(services, tmp_path) -> None:
    """Fetching an unknown blob reports StorageUnavailable."""
    result = invoke(services, "fetch", "missing", "--output", str(tmp_path / "out.png"))
    assert result.exit_code == 1
    assert "StorageUnavailable" in result.output


def test_edit_mint_from_uploaded_source(services, tmp_path) -> None:
    """An uploaded blob can be used as the source of an edit."""
    source = tmp_path / "source.png"
    source.write_bytes(b"source image")
    ref = invoke(services, "upload", str(source)).output.strip()

    result = invoke(services, "mint", "make it blue", "--owner", "alice", "--source", ref)
    assert result.exit_code == 0, result.output
    certificate = json.loads(result.output)["certificate"]
    assert certificate["source_image_hash"] == digest(b"source image").hex()


def test_edit_mint_from_source_file(services, tmp_path) -> None:
    """--source-file uploads the source and mints an edit in one step."""
    source = tmp_path / "source.png"
    source.write_bytes(b"source image")
    result = invoke(
        services, "mint", "make it blue", "--owner", "alice", "--source-file", str(source)
    )
    assert result.exit_code == 0, result.output
    certificate = json.loads(result.output)["certificate"]
    assert certificate["source_image_hash"] == digest(b"source image").hex()


def test_source_options_are_exclusive(services, tmp_path) -> None:
    """--source and --source-file cannot be combined."""
    source = tmp_path / "source.png"
    source.write_bytes(b"source image")
    result = invoke(
        services, "mint", "x", "--owner", "alice", "--source", "ref", "--source-file", str(source)
    )
    assert result.exit_code == 2


def test_oversized_model_is_usage_error(services, registry) -> None:
    """A model id too long to encode is a usage error, not a crash."""
    result = invoke(services, "mint", "a red fox", "--owner", "alice", "--model", "m" * 5000)
    assert result.exit_code == 2
    assert "Traceback" not in result.output
    assert registry.count() == 0
