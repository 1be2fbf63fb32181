"""
FastAPI main application for the Book Records API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List

import structlog
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.auth import get_current_user, get_services, require_role
from api.config import config
from api.database import MongoDBManager
from api.errors import APIError
from api.models import (
    BookCreateRequest, BookResponse, BookUpdateRequest, CredentialsRequest,
    ErrorResponse, HealthResponse, MessageResponse, TokenResponse,
    UserListResponse, UserRecord, UserResponse, UserRole
)
from api.security import TokenManager
from api.services import AppServices, BookService, UserService
from utilities.logger import setup_logging

# Setup logging
logger = structlog.get_logger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def build_services(db_manager: MongoDBManager) -> AppServices:
    """Wire stores and the token manager from the process configuration."""
    tokens = TokenManager(
        secret_key=config.secret_key,
        algorithm=config.algorithm,
        expire_minutes=config.access_token_expire_minutes
    )
    return AppServices(
        users=UserService(db_manager.users, tokens, bcrypt_rounds=config.bcrypt_rounds),
        books=BookService(db_manager.books),
        tokens=tokens,
        user_store=db_manager.users
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    logger.info("Starting Book Records API")

    db_manager = MongoDBManager(config.mongodb_url, config.mongodb_database)
    try:
        await db_manager.connect()
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    app.state.db_manager = db_manager
    app.state.services = build_services(db_manager)
    if config.access_token_expire_minutes is None:
        logger.warning("Bearer tokens are issued without expiry")

    yield

    # Shutdown
    logger.info("Shutting down Book Records API")
    app.state.services = None
    await db_manager.disconnect()


# Create FastAPI application
app = FastAPI(
    title=config.api_title,
    description="""
    REST API for managing book records.

    ## Authentication

    Register with `POST /users/register`, then obtain a token from
    `POST /users/login`. Include it in the Authorization header:

    ```
    Authorization: Bearer your_token_here
    ```

    ## Ownership

    Books belong to the user who created them. Admins can act on every book;
    other users only see and change their own.
    """,
    version=config.api_version,
    lifespan=lifespan
)


# Exception handlers
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    """Render domain errors with their status."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=exc.message).model_dump()
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(message=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report unparseable or mistyped bodies as a bad request."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(message=message).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            message=str(exc) if config.debug else "Internal server error"
        ).model_dump()
    )


@app.get("/", response_model=MessageResponse, tags=["Health"])
async def root():
    return MessageResponse(message="Welcome to Books store!")


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    db_status = "unknown"
    db_manager = getattr(request.app.state, "db_manager", None)
    if db_manager:
        health_info = await db_manager.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=config.api_version,
        database_status=db_status
    )


# Users endpoints
@app.post(
    "/users/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Users"]
)
async def register(body: CredentialsRequest, services: AppServices = Depends(get_services)):
    """
    Register a new user.

    - **email**: Unique, valid email address
    - **password**: Plaintext password, stored only as a hash
    """
    user = await services.users.register(body.email, body.password)
    return UserResponse.from_record(user)


@app.post(
    "/users/create-admin",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Users"]
)
async def create_admin(body: CredentialsRequest, services: AppServices = Depends(get_services)):
    """Register a new user with the admin role."""
    user = await services.users.create_admin(body.email, body.password)
    return UserResponse.from_record(user)


@app.post("/users/login", response_model=TokenResponse, responses=ERROR_RESPONSES, tags=["Users"])
async def login(body: CredentialsRequest, services: AppServices = Depends(get_services)):
    """Exchange email and password for a bearer token."""
    return await services.users.login(body.email, body.password)


@app.post("/users/refresh-token", response_model=TokenResponse, responses=ERROR_RESPONSES, tags=["Users"])
async def refresh_token(
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """Issue a fresh token for the authenticated user."""
    return services.users.refresh_token(user)


@app.get("/users", response_model=UserListResponse, responses=ERROR_RESPONSES, tags=["Users"])
async def list_users(
    user: UserRecord = Depends(require_role(UserRole.ADMIN)),
    services: AppServices = Depends(get_services)
):
    """List all users (admin only)."""
    users = await services.users.list_users()
    return UserListResponse(
        users=[UserResponse.from_record(u) for u in users],
        total=len(users)
    )


# Books endpoints
@app.post(
    "/books",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    tags=["Books"]
)
async def create_book(
    body: BookCreateRequest,
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """
    Create a book owned by the caller.

    - **title**: Book title
    - **author**: Book author
    """
    book = await services.books.create(user, body.title, body.author)
    return BookResponse.from_record(book)


@app.get("/books", response_model=List[BookResponse], responses=ERROR_RESPONSES, tags=["Books"])
async def get_books(
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """List every book for admins, or the caller's own books."""
    books = await services.books.list_accessible(user)
    return [BookResponse.from_record(book) for book in books]


@app.get("/books/{book_id}", response_model=BookResponse, responses=ERROR_RESPONSES, tags=["Books"])
async def get_book(
    book_id: str,
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """
    Get a single book by ID.

    - **book_id**: Book identifier (MongoDB ObjectId)
    """
    book = await services.books.get(user, book_id)
    return BookResponse.from_record(book)


@app.patch("/books/{book_id}", response_model=BookResponse, responses=ERROR_RESPONSES, tags=["Books"])
async def patch_book(
    book_id: str,
    body: BookUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """Update only the supplied fields of a book."""
    book = await services.books.update(user, book_id, body.supplied_fields())
    return BookResponse.from_record(book)


@app.put("/books/{book_id}", response_model=BookResponse, responses=ERROR_RESPONSES, tags=["Books"])
async def put_book(
    book_id: str,
    body: BookUpdateRequest,
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """Replace the title and author of a book."""
    book = await services.books.replace(user, book_id, body.title, body.author)
    return BookResponse.from_record(book)


@app.delete(
    "/books/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**ERROR_RESPONSES, 500: {"model": ErrorResponse}},
    tags=["Books"]
)
async def delete_book(
    book_id: str,
    user: UserRecord = Depends(get_current_user),
    services: AppServices = Depends(get_services)
):
    """Permanently delete a book."""
    await services.books.delete(user, book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower()
    )
