"""
FastAPI main application for the Book Heaven API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import FirebaseTokenVerifier, get_current_identity
from api.config import APIConfig, config
from api.database import (
    BookService, EmptyUpdateError, InvalidBookIdError, connect_to_mongodb
)
from api.middleware import BodySizeLimitMiddleware
from api.models import (
    BookCreatedResponse, ErrorResponse, HealthResponse, MessageResponse, VerifiedIdentity
)

logger = structlog.get_logger(__name__)

NOT_FOUND_OR_UNAUTHORIZED = "Book not found or unauthorized"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: APIConfig = app.state.config
    logger.info("Starting Book Heaven API", port=settings.port)

    client = None
    if app.state.book_service is None:
        client, database = await connect_to_mongodb(settings.mongodb_uri, settings.mongodb_database)
        app.state.book_service = BookService.from_database(database, settings.books_collection)

    verifier = None
    if app.state.token_verifier is None:
        try:
            verifier = FirebaseTokenVerifier.from_service_account(
                settings.get_firebase_credentials_path(),
                check_revoked=settings.firebase_check_revoked
            )
        except Exception as e:
            logger.error(
                "Failed to initialize Firebase",
                credentials_path=settings.firebase_credentials_path,
                error=str(e)
            )
            if client is not None:
                client.close()
            raise
        app.state.token_verifier = verifier

    yield

    logger.info("Shutting down Book Heaven API")
    if verifier is not None:
        verifier.close()
        app.state.token_verifier = None
    if client is not None:
        client.close()
        app.state.book_service = None


def get_book_service(request: Request) -> BookService:
    """Return the book service created at startup."""
    book_service = getattr(request.app.state, "book_service", None)
    if book_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database service not available"
        )
    return book_service


def storage_error(action: str, e: Exception, **context) -> HTTPException:
    logger.error(f"Failed to {action}", error=str(e), **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(e)
    )


async def read_json_object(request: Request) -> Dict[str, Any]:
    """
    Parse the request body as a JSON object.

    Called from route bodies so that authentication always runs before the
    body is looked at.

    Raises:
        RequestValidationError: If the body is not valid JSON or not an object
    """
    try:
        fields = await request.json()
    except ValueError as e:
        raise RequestValidationError([
            {"type": "json_invalid", "loc": ("body",), "msg": f"JSON decode error: {e}", "input": None}
        ])
    if not isinstance(fields, dict):
        raise RequestValidationError([
            {"type": "dict_type", "loc": ("body",), "msg": "Input should be a valid dictionary", "input": fields}
        ])
    return fields


router = APIRouter()


@router.get("/", response_class=PlainTextResponse, tags=["Health"])
async def liveness():
    """Liveness probe."""
    return "Book Heaven server is running!"


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint, reporting database reachability."""
    book_service = getattr(request.app.state, "book_service", None)
    db_status = "unavailable"
    if book_service is not None:
        health_info = await book_service.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=request.app.version,
        database_status=db_status
    )


@router.post("/add-book", response_model=BookCreatedResponse, tags=["Books"])
async def add_book(
    request: Request,
    identity: VerifiedIdentity = Depends(get_current_identity),
    book_service: BookService = Depends(get_book_service)
):
    """
    Add a book owned by the caller.

    Any `userEmail`, `userName` or `createdAt` in the body is replaced by the server.
    """
    fields = await read_json_object(request)
    try:
        book_id = await book_service.create_book(fields, identity)
    except Exception as e:
        raise storage_error("add book", e, owner_email=identity.owner_email)

    return BookCreatedResponse(message="Book added successfully", bookId=book_id)


@router.get("/all-books", response_model=List[Dict[str, Any]], tags=["Books"])
async def all_books(book_service: BookService = Depends(get_book_service)):
    """List every book (public)."""
    try:
        return await book_service.list_books()
    except Exception as e:
        raise storage_error("list books", e)


@router.get("/book-details/{book_id}", response_model=Dict[str, Any], tags=["Books"])
async def book_details(
    book_id: str,
    identity: VerifiedIdentity = Depends(get_current_identity),
    book_service: BookService = Depends(get_book_service)
):
    """
    Get a single book by ID.

    Any authenticated caller may view any book.
    """
    try:
        book = await book_service.get_book(book_id)
    except InvalidBookIdError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid book id")
    except Exception as e:
        raise storage_error("get book", e, book_id=book_id)

    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found")
    return book


@router.get("/myBooks", response_model=List[Dict[str, Any]], tags=["Books"])
async def my_books(
    identity: VerifiedIdentity = Depends(get_current_identity),
    book_service: BookService = Depends(get_book_service)
):
    """List the books added by the caller."""
    try:
        return await book_service.list_books_by_owner(identity.owner_email)
    except Exception as e:
        raise storage_error("list own books", e, owner_email=identity.owner_email)


@router.put("/update-book/{book_id}", response_model=MessageResponse, tags=["Books"])
async def update_book(
    book_id: str,
    request: Request,
    identity: VerifiedIdentity = Depends(get_current_identity),
    book_service: BookService = Depends(get_book_service)
):
    """
    Partially update a book owned by the caller.

    Only the fields in the body change. A missing book and a book owned by
    someone else both answer 404 with the same message.
    """
    fields = await read_json_object(request)
    try:
        updated = await book_service.update_book(book_id, fields, identity.owner_email)
    except InvalidBookIdError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid book id")
    except EmptyUpdateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise storage_error("update book", e, book_id=book_id)

    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_UNAUTHORIZED)
    return MessageResponse(message="Book updated successfully")


@router.delete("/delete-book/{book_id}", response_model=MessageResponse, tags=["Books"])
async def delete_book(
    book_id: str,
    identity: VerifiedIdentity = Depends(get_current_identity),
    book_service: BookService = Depends(get_book_service)
):
    """Delete a book owned by the caller."""
    try:
        deleted = await book_service.delete_book(book_id, identity.owner_email)
    except InvalidBookIdError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid book id")
    except Exception as e:
        raise storage_error("delete book", e, book_id=book_id)

    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_OR_UNAUTHORIZED)
    return MessageResponse(message="Book deleted successfully")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions; server errors carry the underlying failure as `error`."""
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        body = ErrorResponse(error=str(exc.detail))
    else:
        body = ErrorResponse(message=str(exc.detail))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=exc.headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            message="Invalid request body",
            detail=jsonable_encoder(exc.errors())
        ).model_dump(exclude_none=True)
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=str(exc)).model_dump(exclude_none=True)
    )


def create_app(
    settings: Optional[APIConfig] = None,
    book_service: Optional[BookService] = None,
    token_verifier=None
) -> FastAPI:
    """
    Build the application.

    A ``book_service`` or ``token_verifier`` passed in is used as is; anything
    left out is created from ``settings`` when the application starts.
    """
    settings = settings or config

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan
    )
    app.state.config = settings
    app.state.book_service = book_service
    app.state.token_verifier = token_verifier

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router)
    return app


app = create_app()
