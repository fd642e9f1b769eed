"""
Global error handling middleware.
"""

import time
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import SQLAlchemyError

from menu_sync.utils.logger import get_logger
from menu_sync.utils.exceptions import (
    MenuSyncError,
    ConfigurationError,
    DecryptionError,
    ExternalApiError,
    DatabaseError,
    NotFoundError,
    SignatureError,
    ValidationError,
)

logger = get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware for consistent error handling and logging.
    """

    async def dispatch(self, request: Request, call_next):
        """Process request with error handling."""
        start_time = time.time()

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            logger.info(
                f"{request.method} {request.url.path} - {response.status_code} - {duration:.3f}s"
            )

            return response

        except SignatureError as e:
            logger.warning(f"Signature error: {e}")
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"error": "Forbidden", "message": "Request verification failed"}
            )

        except NotFoundError as e:
            logger.info(f"Not found: {e}")
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": "Not Found", "message": e.message}
            )

        except ValidationError as e:
            logger.warning(f"Validation error: {e}")
            return JSONResponse(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                content={
                    "error": "Validation Error",
                    "message": e.message,
                    "details": e.details,
                }
            )

        except ConfigurationError as e:
            logger.warning(f"Configuration error: {e}")
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={"error": "Configuration Error", "message": e.message}
            )

        except DecryptionError as e:
            logger.error(f"Credential error: {e}")
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={"error": "Credential Error", "message": "Stored credentials could not be read"}
            )

        except ExternalApiError as e:
            logger.error(f"External API error: {e}")
            return JSONResponse(
                status_code=status.HTTP_502_BAD_GATEWAY,
                content={"error": "External API Error", "message": e.message}
            )

        except (DatabaseError, SQLAlchemyError) as e:
            logger.error(f"Database error: {e}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Database Error", "message": "A database error occurred"}
            )

        except MenuSyncError as e:
            logger.error(f"Menu Sync error: {e}")
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Error", "message": e.message}
            )

        except Exception as e:
            logger.error(f"Unhandled exception: {e}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "Internal Server Error",
                    "message": "An unexpected error occurred"
                }
            )
