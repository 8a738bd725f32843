# SPDX-License-Identifier: MPL-2.0
"""FastAPI application for the veriforge provenance API."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, make_asgi_app
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from veriforge import __version__
from veriforge.core.app import Services, build_services
from veriforge.core.config import Settings, get_settings
from veriforge.core.exceptions import CertificateNotFoundError, ErrorKind, VeriforgeError
from veriforge.core.models import U64, FieldText, GenerationRequest
from veriforge.core.orchestrator import MintState
from veriforge.core.verification import certificate_summary

logger = logging.getLogger(__name__)

MINTS = Counter("veriforge_mints_total", "mint attempts by terminal state", ["state"])
VERIFICATIONS = Counter(
    "veriforge_verifications_total", "verification requests by outcome", ["kind", "outcome"]
)

STATUS_BY_KIND = {
    ErrorKind.UNKNOWN_ENCLAVE: status.HTTP_403_FORBIDDEN,
    ErrorKind.SIGNATURE_INVALID: 422,
    ErrorKind.ATTESTATION_EXPIRED: 422,
    ErrorKind.DUPLICATE_HASH: status.HTTP_409_CONFLICT,
    ErrorKind.BACKEND_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CERTIFICATE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.HASH_MISMATCH: status.HTTP_409_CONFLICT,
}


class MintRequest(BaseModel):
    """Request body for minting a certificate."""

    prompt: str = Field(min_length=1)
    owner: str = Field(min_length=1)
    seed: Optional[U64] = None
    source_image_ref: Optional[FieldText] = None
    model_id: Optional[FieldText] = None


class PromptGuess(BaseModel):
    """Request body for verifying a certificate, optionally with a prompt guess."""

    prompt: Optional[str] = None


class EnclaveInfo(BaseModel):
    identity: str
    public_key: str
    revoked: bool


class BlobReceipt(BaseModel):
    ref: str
    size: int


def error_status(kind: Optional[ErrorKind]) -> int:
    if kind is None:
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return STATUS_BY_KIND[kind]


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use; defaults to the process-wide settings
        services: Pre-built services; defaults to those described by ``settings``
    """
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    services = services or build_services(settings)

    # Initialize rate limiter
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT])

    app = FastAPI(
        title="Veriforge API",
        description="Provenance certificates for AI-generated images",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.services = services

    # Add rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Add security headers to all responses."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.TRUSTED_HOSTS)

    @app.exception_handler(VeriforgeError)
    async def veriforge_error_handler(request: Request, exc: VeriforgeError) -> JSONResponse:
        return JSONResponse(status_code=error_status(exc.kind), content=exc.to_dict())

    @app.get("/", summary="API Root", tags=["General"])
    async def root(request: Request) -> Dict[str, str]:
        """Root endpoint providing API information."""
        return {
            "message": "Veriforge API",
            "version": __version__,
            "description": "Provenance certificates for AI-generated images",
            "documentation": "/api/docs",
        }

    @app.get("/health", summary="Health Check", tags=["Health"])
    async def health_check(request: Request) -> Dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        certificates = await run_in_threadpool(services.registry.count)
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "veriforge-api",
            "certificates": certificates,
        }

    @app.get("/api/v1/enclaves", response_model=List[EnclaveInfo], tags=["Enclaves"])
    async def list_enclaves(request: Request) -> List[EnclaveInfo]:
        """List the enclave keys this service trusts."""
        key_store = services.key_store
        return [
            EnclaveInfo(
                identity=identity,
                public_key=key.public_bytes().hex(),
                revoked=key_store.is_revoked(identity),
            )
            for identity, key in sorted(key_store.identities().items())
        ]

    @app.post("/api/v1/mint", tags=["Certificates"])
    @limiter.limit(settings.RATE_LIMIT)
    async def mint(request: Request, body: MintRequest) -> JSONResponse:
        """Generate an image in the enclave and certify it."""
        generation = GenerationRequest(
            prompt=body.prompt,
            seed=body.seed,
            source_image_ref=body.source_image_ref,
            model_id=body.model_id or services.default_model_id,
        )
        outcome = await run_in_threadpool(services.orchestrator.mint, generation, body.owner)
        MINTS.labels(outcome.state.value).inc()

        if outcome.state is MintState.MINTED:
            code = status.HTTP_201_CREATED
        elif outcome.state is MintState.DUPLICATE_DETECTED:
            code = status.HTTP_200_OK
        else:
            code = error_status(outcome.reason)
        return JSONResponse(status_code=code, content=outcome.to_dict())

    @app.get("/api/v1/certificates/{certificate_id}", tags=["Certificates"])
    async def get_certificate(request: Request, certificate_id: str) -> Dict[str, Any]:
        """Fetch a certificate by identifier."""
        certificate = await run_in_threadpool(services.registry.get, certificate_id)
        if certificate is None:
            raise CertificateNotFoundError(
                f"Certificate {certificate_id} not found", {"certificate_id": certificate_id}
            )
        return certificate_summary(certificate)

    @app.post("/api/v1/certificates/{certificate_id}/verify", tags=["Verification"])
    @limiter.limit(settings.RATE_LIMIT)
    async def verify_certificate(
        request: Request, certificate_id: str, body: Optional[PromptGuess] = None
    ) -> JSONResponse:
        """Re-hash a certificate's image and compare it with the registered hash."""
        prompt = body.prompt if body else None
        result = await run_in_threadpool(services.engine.verify_by_id, certificate_id, prompt)
        VERIFICATIONS.labels("certificate", result.outcome.value).inc()
        code = status.HTTP_404_NOT_FOUND if result.certificate is None else status.HTTP_200_OK
        return JSONResponse(status_code=code, content=result.to_dict())

    @app.post("/api/v1/verify/image", tags=["Verification"])
    @limiter.limit(settings.RATE_LIMIT)
    async def verify_image(request: Request) -> Dict[str, Any]:
        """Look up the certificate for the raw image bytes in the request body."""
        data = await request.body()
        result = await run_in_threadpool(services.engine.verify_by_image, data)
        VERIFICATIONS.labels("image", "certified" if result.certified else "not_certified").inc()
        return result.to_dict()

    @app.post(
        "/api/v1/blobs",
        response_model=BlobReceipt,
        status_code=status.HTTP_201_CREATED,
        tags=["Blobs"],
    )
    @limiter.limit(settings.RATE_LIMIT)
    async def upload_blob(request: Request) -> BlobReceipt:
        """Store the raw request body, e.g. a source image for an edit."""
        data = await request.body()
        if not data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Request body is empty",
            )
        ref = await run_in_threadpool(services.blob_store.put, data)
        return BlobReceipt(ref=ref, size=len(data))

    @app.get("/api/v1/blobs/{ref}", tags=["Blobs"])
    async def fetch_blob(request: Request, ref: str) -> Response:
        """Return the bytes stored under ``ref`` for preview."""
        data = await run_in_threadpool(services.blob_store.get, ref)
        return Response(content=data, media_type="application/octet-stream")

    app.mount("/metrics", make_asgi_app())

    return app
