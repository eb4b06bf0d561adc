"""
Unified API response envelope
"""
from flask import jsonify
from typing import Any, Optional, Dict


class ApiResponse:
    """API response builder"""

    @staticmethod
    def success(data: Any = None, message: str = 'OK', code: int = 200) -> tuple:
        """
        Success response

        Args:
            data: payload placed under "data"
            message: human readable message
            code: HTTP status

        Returns:
            (Response, status) tuple
        """
        response = {
            'success': True,
            'message': message,
        }
        if data is not None:
            response['data'] = data
        return jsonify(response), code

    @staticmethod
    def created(data: Any = None, message: str = 'Created') -> tuple:
        """201 response"""
        return ApiResponse.success(data, message, 201)

    @staticmethod
    def accepted(data: Any = None, message: str = 'Accepted') -> tuple:
        """202 response for work that continues in the background"""
        return ApiResponse.success(data, message, 202)

    @staticmethod
    def error(
        message: str,
        code: int = 400,
        error_code: str = 'BAD_REQUEST',
        details: Optional[Dict] = None
    ) -> tuple:
        """
        Error response

        Args:
            message: error message
            code: HTTP status
            error_code: stable machine readable code
            details: extra structured information

        Returns:
            (Response, status) tuple
        """
        response = {
            'success': False,
            'error': {
                'code': error_code,
                'message': message,
            }
        }
        if details:
            response['error']['details'] = details
        return jsonify(response), code

    @staticmethod
    def from_exception(exc) -> tuple:
        """Envelope for a ListingSyncError"""
        return ApiResponse.error(exc.message, exc.http_status, exc.error_code, exc.details)

    @staticmethod
    def not_found(message: str = 'Resource not found') -> tuple:
        return ApiResponse.error(message, 404, 'NOT_FOUND')

    @staticmethod
    def unauthorized(message: str = 'Unauthorized') -> tuple:
        return ApiResponse.error(message, 401, 'UNAUTHORIZED')

    @staticmethod
    def forbidden(message: str = 'Forbidden') -> tuple:
        return ApiResponse.error(message, 403, 'FORBIDDEN')

    @staticmethod
    def validation_error(message: str, details: Optional[Dict] = None) -> tuple:
        return ApiResponse.error(message, 400, 'VALIDATION_ERROR', details)

    @staticmethod
    def rate_limited(result) -> tuple:
        """
        429 response for a rejected rate limit check

        The body keeps a top level retry_after so clients that only read the
        envelope root can still back off.
        """
        response = jsonify({
            'success': False,
            'error': {
                'code': 'RATE_LIMIT_EXCEEDED',
                'message': 'Too many requests',
                'details': {
                    'limit': result.limit,
                    'reset': result.reset_at,
                },
            },
            'retry_after': result.retry_after,
        })
        response.headers['Retry-After'] = str(result.retry_after)
        return response, 429

    @staticmethod
    def server_error(message: str = 'Internal server error') -> tuple:
        return ApiResponse.error(message, 500, 'INTERNAL_ERROR')


def success_response(data: Any = None, message: str = 'OK') -> tuple:
    return ApiResponse.success(data, message)


def error_response(
    message: str,
    code: int = 400,
    error_code: str = 'BAD_REQUEST',
    details: Optional[Dict] = None
) -> tuple:
    return ApiResponse.error(message, code, error_code, details)
