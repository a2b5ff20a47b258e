"""HTTP API for property listings.

Reads are public. Creating, editing and deleting listings and issuing
photo upload URLs require a verified bearer token whose
``cognito:groups`` claim names a privileged group. Every rejected call
gets the same 401 shape::

    {"error": "unauthorized", "reason": "no_bearer" | "invalid_token" | "not_privileged"}
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from realty_listings.api.contact import ContactMessage, ContactValidationError
from realty_listings.api.listings import (
    ListingFilter,
    ListingValidationError,
    listing_changes,
    new_listing,
    sort_newest_first,
    utc_now_iso,
)
from realty_listings.api.uploads import UploadRejected
from realty_listings.logging_config import get_logger
from realty_listings.rate_limit import RateLimitError
from realty_listings.security import (
    DEFAULT_PRIVILEGED_GROUPS,
    AuthError,
    InvalidToken,
    NotPrivileged,
    is_privileged,
)

if TYPE_CHECKING:
    from starlette.requests import Request

    from realty_listings.api.contact import ContactRelay
    from realty_listings.api.listings import ListingStore
    from realty_listings.api.uploads import S3UploadIssuer
    from realty_listings.api.verifier import TokenVerifier
    from realty_listings.config import Config
    from realty_listings.rate_limit import RateLimiter

logger = get_logger(__name__)

Endpoint = Callable[["Request"], Awaitable[Response]]

ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Authorization", "Content-Type"]


class APIError(Exception):
    """Error reported to the caller as a JSON body.

    Attributes:
        status_code: HTTP status
        error: Machine-readable error code
        detail: Extra fields merged into the body
    """

    def __init__(self, status_code: int, error: str, **detail: Any) -> None:
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.detail = detail

    def to_response(self) -> JSONResponse:
        return JSONResponse({"error": self.error, **self.detail}, status_code=self.status_code)


def unauthorized(reason: str) -> JSONResponse:
    """401 reply naming why the call was rejected, and nothing else."""
    return JSONResponse(
        {"error": "unauthorized", "reason": reason},
        status_code=401,
        headers={"WWW-Authenticate": 'Bearer realm="listings"'},
    )


async def read_json_object(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object; an empty body is ``{}``.

    Raises:
        APIError: 400 ``invalid_json`` for anything else
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise APIError(400, "invalid_json") from None
    if not isinstance(body, dict):
        raise APIError(400, "invalid_json")
    return body


def _guarded(handler: Endpoint) -> Endpoint:
    """Turn known request errors into 4xx replies and anything else into a 500."""

    async def endpoint(request: Request) -> Response:
        try:
            return await handler(request)
        except APIError as e:
            return e.to_response()
        except (ListingValidationError, ContactValidationError, UploadRejected) as e:
            return APIError(400, "invalid_field", field=e.field).to_response()
        except RateLimitError as e:
            return JSONResponse(
                e.to_dict(),
                status_code=429,
                headers={"Retry-After": str(int(e.retry_after))},
            )
        except Exception:
            logger.exception("Unhandled error in %s %s", request.method, request.url.path)
            return JSONResponse({"error": "server_error"}, status_code=500)

    return endpoint


def create_api_app(
    config: Config,
    verifier: TokenVerifier,
    store: ListingStore,
    uploader: S3UploadIssuer | None = None,
    mailer: ContactRelay | None = None,
    contact_limiter: RateLimiter | None = None,
) -> Starlette:
    """Create the listings API application.

    Args:
        config: Application configuration
        verifier: Bearer token verifier for privileged routes
        store: Listing persistence
        uploader: Photo upload issuer; ``/uploads`` exists only when given
        mailer: Contact relay; ``/contact`` exists only when given
        contact_limiter: Per-client limiter for ``/contact``

    Returns:
        Configured Starlette application
    """
    privileged_groups = tuple(config.privileged_groups or DEFAULT_PRIVILEGED_GROUPS)

    def requires_privilege(handler: Endpoint) -> Endpoint:
        """Run the handler only for a verified caller in a privileged group."""

        async def endpoint(request: Request) -> Response:
            try:
                claims = await run_in_threadpool(
                    verifier.verify, request.headers.get("Authorization")
                )
                if not is_privileged(claims, privileged_groups):
                    raise NotPrivileged
            except AuthError as e:
                cause = f" ({e.cause})" if isinstance(e, InvalidToken) else ""
                logger.warning(
                    "Rejected %s %s: %s%s", request.method, request.url.path, e.reason, cause
                )
                return unauthorized(e.reason)

            request.state.claims = claims
            return await handler(request)

        return endpoint

    async def health_check(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "ok",
            "app_name": config.app_name,
            "environment": config.environment.value,
        })

    async def list_properties(request: Request) -> JSONResponse:
        listing_filter = ListingFilter.from_query(request.query_params)
        listings = [p for p in await store.list_all() if listing_filter.matches(p)]
        return JSONResponse([p.to_dict() for p in sort_newest_first(listings)])

    async def get_property(request: Request) -> JSONResponse:
        listing = await store.get(request.path_params["id"])
        if listing is None:
            raise APIError(404, "not_found")
        return JSONResponse(listing.to_dict())

    async def create_property(request: Request) -> JSONResponse:
        listing = new_listing(await read_json_object(request))
        await store.put(listing)
        logger.info("Listing %s created by %s", listing.id, request.state.claims.get("sub"))
        return JSONResponse(listing.to_dict(), status_code=201)

    async def update_property(request: Request) -> JSONResponse:
        listing_id = request.path_params["id"]
        changes = listing_changes(await read_json_object(request))
        if not changes:
            raise APIError(400, "no_fields")

        listing = await store.update(listing_id, changes, utc_now_iso())
        if listing is None:
            raise APIError(404, "not_found")

        logger.info(
            "Listing %s updated by %s (%s)",
            listing_id,
            request.state.claims.get("sub"),
            ", ".join(sorted(changes)),
        )
        return JSONResponse(listing.to_dict())

    async def delete_property(request: Request) -> Response:
        listing_id = request.path_params["id"]
        await store.delete(listing_id)
        logger.info("Listing %s deleted by %s", listing_id, request.state.claims.get("sub"))
        return Response(status_code=204)

    routes = [
        Route("/health", _guarded(health_check), methods=["GET"]),
        Route("/properties", _guarded(list_properties), methods=["GET"]),
        Route("/properties", _guarded(requires_privilege(create_property)), methods=["POST"]),
        Route("/properties/{id}", _guarded(get_property), methods=["GET"]),
        Route(
            "/properties/{id}", _guarded(requires_privilege(update_property)), methods=["PUT"]
        ),
        Route(
            "/properties/{id}",
            _guarded(requires_privilege(delete_property)),
            methods=["DELETE"],
        ),
    ]

    if uploader is not None:

        async def create_upload(request: Request) -> JSONResponse:
            body = await read_json_object(request)
            filename = body.get("filename")
            content_type = body.get("contentType")
            if not isinstance(filename, str) or not filename:
                raise APIError(400, "invalid_field", field="filename")
            if not isinstance(content_type, str):
                raise APIError(400, "invalid_field", field="contentType")
            ticket = await uploader.issue(filename, content_type)
            return JSONResponse(ticket.to_dict())

        routes.append(
            Route("/uploads", _guarded(requires_privilege(create_upload)), methods=["POST"])
        )

    if mailer is not None:

        async def submit_contact(request: Request) -> JSONResponse:
            if contact_limiter is not None:
                client = request.client.host if request.client else "unknown"
                await contact_limiter.check(client)
            message = ContactMessage.from_body(await read_json_object(request))
            await mailer.send(message)
            return JSONResponse({"status": "sent"}, status_code=202)

        routes.append(Route("/contact", _guarded(submit_contact), methods=["POST"]))

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=[config.cors_origin],
            allow_methods=ALLOWED_METHODS,
            allow_headers=ALLOWED_HEADERS,
        )
    ]

    logger.debug("API routes: %s", ", ".join(sorted({r.path for r in routes})))
    return Starlette(routes=routes, middleware=middleware)


def create_app_from_config(config: Config) -> Starlette:
    """Wire the API with production collaborators built from configuration.

    Raises:
        ConfigError: If token verification settings are missing
    """
    from realty_listings.api.contact import SESContactRelay
    from realty_listings.api.listings import create_listing_store
    from realty_listings.api.uploads import S3UploadIssuer
    from realty_listings.api.verifier import TokenVerifier
    from realty_listings.rate_limit import create_rate_limiter

    verifier = TokenVerifier.from_config(config)
    store = create_listing_store(config)
    uploader = S3UploadIssuer.from_config(config) if config.uploads_bucket else None
    mailer = SESContactRelay.from_config(config) if config.contact_recipient else None

    if uploader is None:
        logger.info("Photo uploads disabled (no uploads_bucket)")
    if mailer is None:
        logger.info("Contact form disabled (no contact_recipient)")

    return create_api_app(
        config,
        verifier=verifier,
        store=store,
        uploader=uploader,
        mailer=mailer,
        contact_limiter=create_rate_limiter(config),
    )


async def run_server(app: Starlette, host: str, port: int) -> None:
    """Run the API with uvicorn.

    Args:
        app: Starlette ASGI application
        host: Host to bind to
        port: Port to bind to
    """
    import uvicorn

    logger.info("Starting listings API on %s:%d", host, port)

    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    await server.serve()
